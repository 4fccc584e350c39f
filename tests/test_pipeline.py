import logging
import threading
import time

import pytest

from true_north import spatial_sources
from true_north.config import EngineConfig
from true_north.main import Pipeline, configure_logging, parse_args
from true_north.models import NORTH_ID, WARM_ALTERNATE_TONE, Coordinate, HeadingSample, Waypoint
from true_north.renderer import BinauralMixer
from true_north.stores import ToneProfileStore, WaypointStore


SR = 8000


@pytest.fixture
def pipeline():
    config = EngineConfig(sample_rate=SR)
    renderer = BinauralMixer(sample_rate=SR, volume=config.volume)
    pipe = Pipeline(config, WaypointStore(), ToneProfileStore(), renderer)
    yield pipe
    pipe.stop()


def test_north_source_starts_with_pipeline(pipeline):
    result = pipeline.refresh_sources(force=True)
    assert result.added == [NORTH_ID]
    assert pipeline.renderer.is_playing(NORTH_ID)
    # Nothing changed since, so a plain refresh does nothing
    assert pipeline.refresh_sources() is None


def test_heading_moves_north_through_the_throttle(pipeline):
    pipeline.refresh_sources(force=True)
    for _ in range(200):
        pipeline.fusion.on_heading(HeadingSample(90.0, 5.0))
    assert pipeline.throttle.flush()

    north = pipeline.sources.source(NORTH_ID)
    # Facing east, north is heard on the left
    assert north.position.x < 0
    assert north.position.x == pytest.approx(-pipeline.config.presentation_distance, rel=1e-3)


def cafe_waypoint() -> Waypoint:
    return Waypoint(
        name="cafe",
        coordinate=Coordinate(0.0, 1.0),
        tone_profile_id=WARM_ALTERNATE_TONE.id,
        id="cafe",
    )


def test_store_change_reconciles_without_a_sensor_sample(pipeline):
    pipeline.refresh_sources(force=True)
    pipeline.fusion.on_location(Coordinate(0.0, 0.0))
    pipeline.throttle.flush()

    pipeline.waypoints.add(cafe_waypoint())
    result = pipeline.wait_for_refresh(timeout=5.0)

    assert result.added == ["cafe"]
    assert pipeline.sources.active_ids == {NORTH_ID, "cafe"}
    # Placed from the last snapshot: heading near 0, so an eastern waypoint is on the right
    assert pipeline.sources.source("cafe").position.x > 0


def test_slow_synthesis_does_not_stall_position_updates(pipeline, monkeypatch):
    pipeline.refresh_sources(force=True)
    release = threading.Event()
    original = spatial_sources.synthesize

    def slow_synthesize(profile, *args):
        release.wait(timeout=5.0)
        return original(profile, *args)

    monkeypatch.setattr(spatial_sources, "synthesize", slow_synthesize)
    pipeline.waypoints.add(cafe_waypoint())

    try:
        for _ in range(200):
            pipeline.fusion.on_heading(HeadingSample(90.0, 5.0))
        started = time.time()
        assert pipeline.throttle.flush()
        assert time.time() - started < 1.0
        assert pipeline.sources.source(NORTH_ID).position.x < 0
    finally:
        release.set()
    pipeline.wait_for_refresh(timeout=5.0)
    assert "cafe" in pipeline.sources.active_ids


def test_failed_reconcile_is_retried(pipeline, monkeypatch):
    real_reconcile = pipeline.sources.reconcile
    calls = []

    def flaky(desired, profiles):
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("renderer hiccup")
        return real_reconcile(desired, profiles)

    monkeypatch.setattr(pipeline.sources, "reconcile", flaky)
    with pytest.raises(RuntimeError):
        pipeline.refresh_sources()
    result = pipeline.refresh_sources()
    assert result is not None
    assert result.added == [NORTH_ID]


def test_store_changes_after_stop_are_ignored(pipeline):
    pipeline.stop()
    pipeline.waypoints.add(cafe_waypoint())
    assert pipeline.schedule_refresh() is None


def test_disabling_north_removes_it(pipeline):
    pipeline.refresh_sources(force=True)
    pipeline.config.north_enabled = False
    result = pipeline.refresh_sources(force=True)
    assert result.removed == [NORTH_ID]
    assert pipeline.renderer.source_ids == []


def test_parse_args_defaults():
    args = parse_args([])
    assert not args.mock
    assert not args.no_audio
    assert args.log_level == "INFO"


def test_configure_logging_falls_back_on_bad_level():
    root = logging.getLogger()
    previous_level, previous_handlers = root.level, list(root.handlers)
    try:
        configure_logging("chatty")
        assert root.level == logging.INFO
    finally:
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)
