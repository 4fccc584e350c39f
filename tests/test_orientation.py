import math
import time

import pytest

from true_north import orientation
from true_north.config import EngineConfig
from true_north.models import Coordinate, HeadAttitude, HeadingSample, OrientationSnapshot
from true_north.orientation import OrientationActor, OrientationFusion


def head(yaw_deg: float) -> HeadAttitude:
    return HeadAttitude(yaw=math.radians(yaw_deg))


class TestNormalMode:
    def test_device_heading_only(self):
        fusion = OrientationFusion()
        snap = fusion.on_heading(HeadingSample(magnetic_heading=90.0, accuracy=5.0))
        assert snap.device_heading == 90.0
        assert snap.raw_combined_heading == 90.0
        assert not snap.head_tracking_active

    def test_true_heading_preferred_over_magnetic(self):
        fusion = OrientationFusion()
        snap = fusion.on_heading(HeadingSample(magnetic_heading=90.0, accuracy=5.0, true_heading=95.0))
        assert snap.device_heading == 95.0

    def test_head_rotation_steers_combined_heading(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(90.0, 5.0))
        snap = fusion.on_head_attitude(head(30.0))
        assert snap.head_tracking_active
        assert snap.raw_combined_heading == pytest.approx(60.0)

    def test_combined_heading_wraps(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(10.0, 5.0))
        snap = fusion.on_head_attitude(head(30.0))
        assert snap.raw_combined_heading == pytest.approx(340.0)

    def test_head_loss_falls_back_to_device(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(90.0, 5.0))
        fusion.on_head_attitude(head(30.0))
        snap = fusion.on_head_attitude(None)
        assert not snap.head_tracking_active
        assert snap.raw_combined_heading == pytest.approx(90.0)

    def test_audio_smoothing_applied_to_combined(self):
        fusion = OrientationFusion(EngineConfig(audio_smoothing_alpha=0.1))
        snap = fusion.on_heading(HeadingSample(90.0, 5.0))
        assert snap.combined_heading == pytest.approx(9.0)
        assert snap.smoothed_device_heading == 90.0

    def test_display_smoothing_is_independent(self):
        fusion = OrientationFusion(EngineConfig(display_smoothing_alpha=0.5, audio_smoothing_alpha=0.1))
        fusion.on_heading(HeadingSample(0.0, 5.0))
        snap = fusion.on_heading(HeadingSample(20.0, 5.0))
        assert snap.smoothed_device_heading == pytest.approx(10.0)
        assert snap.combined_heading == pytest.approx(2.0)

    @pytest.mark.parametrize("accuracy, needed", [(-1.0, True), (30.0, True), (25.0, False), (5.0, False)])
    def test_calibration_flag(self, accuracy, needed):
        fusion = OrientationFusion()
        snap = fusion.on_heading(HeadingSample(45.0, accuracy))
        assert snap.calibration_needed is needed
        # Output is produced regardless
        assert snap.raw_combined_heading == 45.0

    def test_location_is_tracked(self):
        fusion = OrientationFusion()
        snap = fusion.on_location(Coordinate(1.0, 2.0))
        assert snap.listener == Coordinate(1.0, 2.0)


class TestLockedMode:
    def test_identical_head_samples_leave_heading_unchanged(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(100.0, 5.0))
        fusion.on_head_attitude(head(10.0))
        locked = fusion.set_locked(True)
        assert locked.locked
        for _ in range(5):
            snap = fusion.on_head_attitude(head(10.0))
            assert snap.raw_combined_heading == pytest.approx(locked.raw_combined_heading)
        assert locked.raw_combined_heading == pytest.approx(100.0)

    def test_head_turn_moves_heading_the_opposite_way(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(100.0, 5.0))
        fusion.on_head_attitude(head(10.0))
        before = fusion.set_locked(True).raw_combined_heading
        after = fusion.on_head_attitude(head(30.0)).raw_combined_heading
        assert after - before == pytest.approx(-20.0)

    def test_device_heading_ignored_while_locked(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(100.0, 5.0))
        fusion.set_locked(True)
        snap = fusion.on_heading(HeadingSample(200.0, 5.0))
        assert snap.device_heading == 200.0
        assert snap.raw_combined_heading == pytest.approx(100.0)

    def test_first_head_sample_after_lock_becomes_baseline(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(100.0, 5.0))
        fusion.set_locked(True)
        snap = fusion.on_head_attitude(head(40.0))
        assert snap.raw_combined_heading == pytest.approx(100.0)
        snap = fusion.on_head_attitude(head(50.0))
        assert snap.raw_combined_heading == pytest.approx(90.0)

    def test_unlock_returns_to_normal_mode(self):
        fusion = OrientationFusion()
        fusion.on_heading(HeadingSample(100.0, 5.0))
        fusion.toggle_lock()
        fusion.on_heading(HeadingSample(200.0, 5.0))
        snap = fusion.toggle_lock()
        assert not snap.locked
        assert snap.raw_combined_heading == pytest.approx(200.0)


def test_listeners_receive_snapshots():
    fusion = OrientationFusion()
    received: list[OrientationSnapshot] = []
    fusion.subscribe(received.append)
    fusion.on_heading(HeadingSample(10.0, 5.0))
    fusion.on_head_attitude(head(5.0))
    assert len(received) == 2
    assert received[-1].head_tracking_active


def test_snapshot_offset():
    snap = OrientationSnapshot(
        device_heading=10.0,
        smoothed_device_heading=10.0,
        raw_combined_heading=340.0,
        combined_heading=340.0,
        head_tracking_active=True,
        heading_accuracy=5.0,
        calibration_needed=False,
        locked=False,
    )
    assert snap.offset == pytest.approx(30.0)


class TestActor:
    def test_drain_applies_messages_in_order(self):
        actor = OrientationActor()
        actor.submit_location(Coordinate(1.0, 1.0))
        actor.submit_heading(HeadingSample(50.0, 5.0))
        actor.submit_head_attitude(head(20.0))
        actor.drain()
        state = actor.fusion.state
        assert state.listener == Coordinate(1.0, 1.0)
        assert state.raw_combined_heading == pytest.approx(30.0)

    def test_full_queue_drops_oldest_sample(self):
        actor = OrientationActor(queue_size=2)
        for heading in (10.0, 20.0, 30.0):
            actor.submit_heading(HeadingSample(heading, 5.0))
        actor.drain()
        assert actor.fusion.state.device_heading == 30.0

    def test_lock_commands_are_never_dropped(self):
        actor = OrientationActor(queue_size=2)
        actor.set_locked(True)
        actor.submit_heading(HeadingSample(10.0, 5.0))
        actor.submit_heading(HeadingSample(20.0, 5.0))
        actor.drain()
        assert actor.fusion.state.locked
        assert actor.fusion.state.device_heading == 20.0

    def test_head_loss_survives_a_full_queue(self):
        actor = OrientationActor(queue_size=2)
        actor.submit_heading(HeadingSample(100.0, 5.0))
        actor.submit_head_attitude(head(30.0))
        actor.drain()

        actor.submit_head_attitude(None)
        for heading in (101.0, 102.0, 103.0):
            actor.submit_heading(HeadingSample(heading, 5.0))
        actor.drain()

        state = actor.fusion.state
        assert not state.head_tracking_active
        assert state.raw_combined_heading == pytest.approx(103.0)

    def test_location_loss_survives_a_full_queue(self):
        actor = OrientationActor(queue_size=2)
        actor.submit_location(Coordinate(1.0, 1.0))
        actor.drain()

        actor.submit_location(None)
        for heading in (10.0, 20.0, 30.0):
            actor.submit_heading(HeadingSample(heading, 5.0))
        actor.drain()

        assert actor.fusion.state.listener is None
        assert actor.fusion.state.device_heading == 30.0

    def test_eviction_prefers_the_same_stream(self):
        actor = OrientationActor(queue_size=2)
        actor.submit_head_attitude(head(10.0))
        actor.submit_heading(HeadingSample(50.0, 5.0))
        actor.submit_heading(HeadingSample(60.0, 5.0))
        actor.drain()

        state = actor.fusion.state
        assert state.head_tracking_active
        assert state.device_heading == 60.0
        assert state.raw_combined_heading == pytest.approx(50.0)

    def test_stalled_queue_does_not_block_forever(self, monkeypatch):
        monkeypatch.setattr(orientation, "COMMAND_PUT_TIMEOUT_S", 0.05)
        actor = OrientationActor(queue_size=1)
        actor.set_locked(True)
        started = time.time()
        actor.toggle_lock()
        assert time.time() - started < 1.0
        actor.drain()
        assert actor.fusion.state.locked

    def test_running_actor_processes_samples(self):
        actor = OrientationActor()
        actor.start()
        try:
            actor.submit_heading(HeadingSample(77.0, 5.0))
            deadline = time.time() + 2.0
            while actor.fusion.state.device_heading != 77.0 and time.time() < deadline:
                time.sleep(0.01)
            assert actor.fusion.state.device_heading == 77.0
        finally:
            actor.stop()
            actor.join(timeout=2.0)
        assert not actor.is_alive()
