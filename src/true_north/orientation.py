"""
Orientation fusion: turns compass and head-tracker samples into the heading
that drives audio placement.

``OrientationFusion`` is a plain single-writer state machine. ``OrientationActor``
runs it on its own thread and fans all sensor streams in through one bounded
queue, so sensor callbacks only hand samples off and never touch state.
"""

from __future__ import annotations

import logging
import math
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .angles import HeadingSmoother, normalize
from .config import EngineConfig
from .models import Coordinate, HeadAttitude, HeadingSample, OrientationSnapshot, OrientationState


logger = logging.getLogger(__name__)

SnapshotListener = Callable[[OrientationSnapshot], None]


class OrientationFusion:
    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.state = OrientationState()
        self._display_smoother = HeadingSmoother(self.config.display_smoothing_alpha)
        self._audio_smoother = HeadingSmoother(self.config.audio_smoothing_alpha, initial=0.0)
        self._listeners: list[SnapshotListener] = []

    def subscribe(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def on_heading(self, sample: HeadingSample) -> OrientationSnapshot:
        state = self.state
        state.device_heading = normalize(sample.heading)
        state.smoothed_device_heading = self._display_smoother.update(state.device_heading)
        state.heading_accuracy = sample.accuracy
        calibration_needed = (
            sample.accuracy < 0 or sample.accuracy > self.config.calibration_accuracy_threshold
        )
        if calibration_needed and not state.calibration_needed:
            logger.warning("Heading accuracy %.1f is poor; compass calibration needed", sample.accuracy)
        state.calibration_needed = calibration_needed
        return self._recompute()

    def on_head_attitude(self, attitude: Optional[HeadAttitude]) -> OrientationSnapshot:
        state = self.state
        if attitude is None:
            if state.head_tracking_active:
                logger.info("Head tracking lost; falling back to device heading")
            state.head_attitude = None
            state.head_tracking_active = False
            return self._recompute()

        if not state.head_tracking_active:
            logger.info("Head tracking active")
        state.head_attitude = attitude
        state.head_tracking_active = True
        if state.locked and state.locked_head_yaw is None:
            # Headphones connected after locking: first sample is the baseline
            state.locked_head_yaw = math.degrees(attitude.yaw)
            logger.debug("Locked head yaw baseline captured late: %.1f", state.locked_head_yaw)
        return self._recompute()

    def on_location(self, coordinate: Optional[Coordinate]) -> OrientationSnapshot:
        self.state.listener = coordinate
        return self._publish()

    def set_locked(self, locked: bool) -> OrientationSnapshot:
        state = self.state
        if locked == state.locked:
            return self.snapshot()
        if locked:
            state.locked = True
            state.locked_reference = state.device_heading
            state.locked_head_yaw = (
                math.degrees(state.head_attitude.yaw) if state.head_attitude is not None else None
            )
            logger.info(
                "Locked reference heading at %.1f (head yaw %s)",
                state.locked_reference,
                "n/a" if state.locked_head_yaw is None else f"{state.locked_head_yaw:.1f}",
            )
        else:
            state.locked = False
            state.locked_reference = None
            state.locked_head_yaw = None
            logger.info("Reference heading unlocked")
        return self._recompute()

    def toggle_lock(self) -> OrientationSnapshot:
        return self.set_locked(not self.state.locked)

    def snapshot(self) -> OrientationSnapshot:
        state = self.state
        return OrientationSnapshot(
            device_heading=state.device_heading,
            smoothed_device_heading=state.smoothed_device_heading,
            raw_combined_heading=state.raw_combined_heading,
            combined_heading=state.combined_heading,
            head_tracking_active=state.head_tracking_active,
            heading_accuracy=state.heading_accuracy,
            calibration_needed=state.calibration_needed,
            locked=state.locked,
            listener=state.listener,
        )

    def _fuse(self) -> float:
        state = self.state
        attitude = state.head_attitude
        if state.locked:
            if state.locked_reference is None:
                raise RuntimeError("Locked without a reference heading")
            if attitude is None or state.locked_head_yaw is None:
                return state.locked_reference
            head_turn = math.degrees(attitude.yaw) - state.locked_head_yaw
            return normalize(state.locked_reference - head_turn)
        if attitude is None:
            return state.device_heading
        return normalize(state.device_heading - math.degrees(attitude.yaw))

    def _recompute(self) -> OrientationSnapshot:
        state = self.state
        state.raw_combined_heading = self._fuse()
        state.combined_heading = self._audio_smoother.update(state.raw_combined_heading)
        return self._publish()

    def _publish(self) -> OrientationSnapshot:
        snapshot = self.snapshot()
        for listener in self._listeners:
            listener(snapshot)
        return snapshot


@dataclass(frozen=True)
class _LockCommand:
    locked: Optional[bool]  # None toggles


@dataclass(frozen=True)
class _LocationUpdate:
    coordinate: Optional[Coordinate]


@dataclass(frozen=True)
class _HeadUpdate:
    attitude: Optional[HeadAttitude]


SensorMessage = Union[HeadingSample, _HeadUpdate, _LocationUpdate, _LockCommand]

COMMAND_PUT_TIMEOUT_S = 1.0


def _is_droppable(message: SensorMessage) -> bool:
    """Plain samples may be superseded; commands and "sensor lost" transitions may not."""
    if isinstance(message, _LockCommand):
        return False
    if isinstance(message, _HeadUpdate):
        return message.attitude is not None
    if isinstance(message, _LocationUpdate):
        return message.coordinate is not None
    return True


class OrientationActor(threading.Thread):
    """Runs an ``OrientationFusion`` on one thread, fed by a bounded queue."""

    def __init__(
        self,
        fusion: OrientationFusion | None = None,
        queue_size: int = 64,
    ) -> None:
        super().__init__(daemon=True, name="orientation-actor")
        self.fusion = fusion or OrientationFusion()
        self._queue: "queue.Queue[SensorMessage]" = queue.Queue(maxsize=queue_size)
        self._running = threading.Event()
        self._running.set()

    def submit_heading(self, sample: HeadingSample) -> None:
        self._offer(sample)

    def submit_head_attitude(self, attitude: Optional[HeadAttitude]) -> None:
        self._offer(_HeadUpdate(attitude))

    def submit_location(self, coordinate: Optional[Coordinate]) -> None:
        self._offer(_LocationUpdate(coordinate))

    def set_locked(self, locked: bool) -> None:
        self._offer(_LockCommand(locked))

    def toggle_lock(self) -> None:
        self._offer(_LockCommand(None))

    def _offer(self, message: SensorMessage) -> None:
        try:
            self._queue.put_nowait(message)
            return
        except queue.Full:
            pass
        if self._evict_oldest_sample(type(message)):
            logger.warning("Sensor queue full; dropping oldest sample")
            self._offer(message)
        elif not _is_droppable(message):
            # Queue holds only commands and transitions; wait for the actor
            try:
                self._queue.put(message, timeout=COMMAND_PUT_TIMEOUT_S)
            except queue.Full:
                logger.error("Sensor queue stalled; dropping %r", message)
        else:
            logger.warning("Sensor queue full of commands; dropping %r", message)

    def _evict_oldest_sample(self, preferred: type) -> bool:
        """Drop the oldest droppable message, of the ``preferred`` stream if one is queued."""
        with self._queue.mutex:
            pending = self._queue.queue
            candidates = [index for index, queued in enumerate(pending) if _is_droppable(queued)]
            if not candidates:
                return False
            same_stream = [index for index in candidates if type(pending[index]) is preferred]
            del pending[(same_stream or candidates)[0]]
        return True

    def run(self) -> None:
        logger.info("Orientation actor started")
        while self._running.is_set():
            try:
                message = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self._dispatch(message)
            except Exception:
                logger.exception("Failed to apply sensor message %r", message)
        logger.info("Orientation actor exiting")

    def drain(self) -> None:
        """Apply every queued message on the calling thread (actor not running)."""
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                return
            self._dispatch(message)

    def stop(self) -> None:
        self._running.clear()

    def _dispatch(self, message: SensorMessage) -> None:
        fusion = self.fusion
        if isinstance(message, HeadingSample):
            fusion.on_heading(message)
        elif isinstance(message, _HeadUpdate):
            fusion.on_head_attitude(message.attitude)
        elif isinstance(message, _LocationUpdate):
            fusion.on_location(message.coordinate)
        elif isinstance(message, _LockCommand):
            if message.locked is None:
                fusion.toggle_lock()
            else:
                fusion.set_locked(message.locked)
        else:
            raise TypeError(f"Unsupported sensor message: {message!r}")
