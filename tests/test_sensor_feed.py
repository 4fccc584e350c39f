import math

import pytest

from true_north.models import Coordinate, HeadAttitude, HeadingSample
from true_north.orientation import OrientationActor
from true_north.sensor_feed import (
    dispatch,
    line_sensor_stream,
    offline_sensor_stream,
    parse_sensor_event,
)


def test_parse_heading():
    kind, sample = parse_sensor_event('{"type": "heading", "heading": 12.5, "accuracy": 5, "true_heading": 14}')
    assert kind == "heading"
    assert sample == HeadingSample(magnetic_heading=12.5, accuracy=5.0, true_heading=14.0)


def test_parse_heading_defaults_mark_unavailable():
    _, sample = parse_sensor_event('{"type": "heading", "heading": 12.5}')
    assert sample.accuracy == -1.0
    assert sample.heading == 12.5


def test_parse_head_and_loss():
    assert parse_sensor_event('{"type": "head", "yaw": 0.5}') == ("head", HeadAttitude(yaw=0.5))
    assert parse_sensor_event('{"type": "head_lost"}') == ("head", None)


def test_parse_location_and_lock():
    assert parse_sensor_event('{"type": "location", "latitude": 1, "longitude": 2}') == (
        "location",
        Coordinate(1.0, 2.0),
    )
    assert parse_sensor_event('{"type": "lock", "locked": true}') == ("lock", True)
    assert parse_sensor_event('{"type": "lock"}') == ("lock", None)


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "[1, 2]",
        '{"type": "teleport"}',
        '{"type": "heading"}',
        '{"type": "heading", "heading": "north"}',
        '{"type": "head", "yaw": NaN}',
    ],
)
def test_malformed_lines_rejected(line):
    with pytest.raises(ValueError):
        parse_sensor_event(line)


def test_line_stream_skips_bad_lines(caplog):
    lines = [
        '{"type": "heading", "heading": 10}\n',
        "\n",
        "garbage\n",
        '{"type": "lock"}\n',
    ]
    events = list(line_sensor_stream(lines))
    assert [kind for kind, _ in events] == ["heading", "lock"]
    assert "line 3" in caplog.text


def test_dispatch_routes_to_actor():
    actor = OrientationActor()
    for line in [
        '{"type": "location", "latitude": 1, "longitude": 2}',
        '{"type": "heading", "heading": 90, "accuracy": 5}',
        '{"type": "head", "yaw": 0}',
        '{"type": "lock", "locked": true}',
    ]:
        dispatch(actor, parse_sensor_event(line))
    actor.drain()
    state = actor.fusion.state
    assert state.listener == Coordinate(1.0, 2.0)
    assert state.device_heading == 90.0
    assert state.head_tracking_active
    assert state.locked


def test_offline_stream_generates_events():
    stream = offline_sensor_stream(duration_s=0.2, seed=42, interval_s=0.01)
    events = [next(stream) for _ in range(5)]
    assert events[0][0] == "location"
    headings = [payload for kind, payload in events if kind == "heading"]
    assert headings
    assert all(0.0 <= sample.magnetic_heading < 360.0 for sample in headings)
    heads = [payload for kind, payload in events if kind == "head" and payload is not None]
    assert all(abs(attitude.yaw) <= math.radians(45.0) + 1e-9 for attitude in heads)


def test_dispatch_rejects_mismatched_payload():
    actor = OrientationActor()
    with pytest.raises(TypeError):
        dispatch(actor, ("heading", Coordinate(1.0, 2.0)))
    with pytest.raises(ValueError):
        dispatch(actor, ("teleport", None))
