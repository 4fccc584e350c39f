from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Optional

from .config import CONFIG_FILE, ConfigManager, EngineConfig
from .models import OrientationSnapshot
from .orientation import OrientationActor, OrientationFusion
from .renderer import AudioRenderer, BinauralMixer, SoundcardRenderer
from .sensor_feed import SensorEvent, dispatch, line_sensor_stream, offline_sensor_stream
from .spatial_sources import ReconcileResult, SpatialSourceManager
from .stores import ToneProfileStore, WaypointStore
from .throttle import LatestValueThrottle


logger = logging.getLogger(__name__)


class Pipeline:
    """Sensors -> orientation actor -> throttle -> source manager -> renderer.

    Store edits are reconciled on a dedicated worker; the throttle tick only
    moves sources, so synthesis never stalls position updates.
    """

    def __init__(
        self,
        config: EngineConfig,
        waypoints: WaypointStore | None = None,
        profiles: ToneProfileStore | None = None,
        renderer: AudioRenderer | None = None,
    ) -> None:
        self.config = config
        self.waypoints = waypoints or WaypointStore()
        self.profiles = profiles or ToneProfileStore()
        self.renderer = renderer or SoundcardRenderer(
            blocksize=config.blocksize,
            sample_rate=config.sample_rate,
            volume=config.volume,
            reference_distance=config.reference_distance,
            max_distance=config.max_distance,
            rolloff_factor=config.rolloff_factor,
            rear_cutoff_hz=config.rear_cutoff_hz,
        )
        self.fusion = OrientationFusion(config)
        self.actor = OrientationActor(self.fusion, queue_size=config.sensor_queue_size)
        self.sources = SpatialSourceManager(
            self.renderer,
            config,
            default_profile=self.profiles.default_profile,
        )
        self.throttle: LatestValueThrottle[OrientationSnapshot] = LatestValueThrottle(
            self.apply_snapshot,
            interval=config.update_interval_s,
        )
        self.fusion.subscribe(self.throttle.offer)
        self._synced_revisions: Optional[tuple[int, int]] = None
        self._reconcile_lock = threading.Lock()
        self._refresh_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reconcile")
        self._refresh_lock = threading.Lock()
        self._refresh_queued = False
        self._pending_refresh: Optional[Future] = None
        self._last_snapshot: Optional[OrientationSnapshot] = None
        self._threads: list[threading.Thread] = []
        self._running = threading.Event()
        self._running.set()
        self.waypoints.subscribe(self.schedule_refresh)
        self.profiles.subscribe(self.schedule_refresh)

    def refresh_sources(self, force: bool = False) -> Optional[ReconcileResult]:
        """Reconcile playing sources if the stores changed since the last call."""
        with self._reconcile_lock:
            revisions = (self.waypoints.revision, self.profiles.revision)
            if not force and revisions == self._synced_revisions:
                return None
            self.sources.default_profile = self.profiles.default_profile
            desired = self.waypoints.desired_sources(
                north_enabled=self.config.north_enabled,
                north_profile_id=self.config.north_tone_profile_id,
            )
            result = self.sources.reconcile(desired, self.profiles.by_id())
            # Only mark synced once reconcile went through, so a failure is retried
            self._synced_revisions = revisions
        snapshot = self._last_snapshot
        if result.added and snapshot is not None:
            # Place new sources now rather than waiting for the next sensor sample
            self.apply_snapshot(snapshot)
        return result

    def schedule_refresh(self) -> Optional[Future]:
        """Queue a reconcile on the refresh worker; repeated calls coalesce."""
        with self._refresh_lock:
            if not self._running.is_set():
                return None
            if not self._refresh_queued:
                self._refresh_queued = True
                self._pending_refresh = self._refresh_executor.submit(self._refresh_worker)
            return self._pending_refresh

    def wait_for_refresh(self, timeout: Optional[float] = None) -> Optional[ReconcileResult]:
        with self._refresh_lock:
            pending = self._pending_refresh
        return pending.result(timeout=timeout) if pending is not None else None

    def _refresh_worker(self) -> Optional[ReconcileResult]:
        with self._refresh_lock:
            self._refresh_queued = False
        try:
            return self.refresh_sources()
        except Exception:
            logger.exception("Source refresh failed")
            return None

    def apply_snapshot(self, snapshot: OrientationSnapshot) -> None:
        self._last_snapshot = snapshot
        self.sources.update_positions(
            snapshot.combined_heading,
            snapshot.listener,
            self.waypoints.by_id(),
        )

    def start(self, use_mock: bool = False, sensor_lines: Iterable[str] | None = None) -> None:
        logger.info("Starting pipeline (use_mock=%s)", use_mock)
        self.refresh_sources(force=True)

        if isinstance(self.renderer, SoundcardRenderer):
            try:
                self.renderer.start()
            except RuntimeError as exc:
                # Degraded: sources are still positioned, nothing is heard
                logger.warning("Audio output unavailable (%s); continuing without playback", exc)

        self.actor.start()
        self._threads.append(self.actor)
        self.throttle.start()

        if use_mock:
            logger.info("Using offline sensor stream for mock mode")
            events: Iterable[SensorEvent] = offline_sensor_stream()
        else:
            events = line_sensor_stream(sensor_lines if sensor_lines is not None else sys.stdin)

        feeder = threading.Thread(target=self._feed_loop, args=(events,), daemon=True, name="sensor-feed")
        feeder.start()
        self._threads.append(feeder)
        logger.debug("Sensor feed thread started")

    def stop(self) -> None:
        logger.info("Stopping pipeline")
        with self._refresh_lock:
            self._running.clear()
        self.actor.stop()
        self.throttle.stop()
        self._refresh_executor.shutdown(wait=True)
        self.sources.shutdown()
        if isinstance(self.renderer, SoundcardRenderer):
            self.renderer.close()

    def join(self) -> None:
        for thread in self._threads:
            logger.debug("Joining thread %s", thread.name)
            thread.join(timeout=2.0)
        self._threads.clear()
        logger.info("Pipeline threads joined")

    def _feed_loop(self, events: Iterable[SensorEvent]) -> None:
        for event in events:
            if not self._running.is_set():
                break
            dispatch(self.actor, event)
        logger.info("Sensor feed ended")


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), None)
    invalid = False
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
        invalid = True
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )
    if invalid:
        logging.getLogger(__name__).warning("Invalid log level '%s'; defaulting to INFO", level)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Spatial audio compass: hear north and saved waypoints")
    parser.add_argument("--mock", action="store_true", help="Use simulated sensors instead of JSON lines on stdin")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Engine settings JSON file")
    parser.add_argument("--waypoints", type=Path, default=None, help="Waypoint list JSON file")
    parser.add_argument("--profiles", type=Path, default=None, help="Tone profile list JSON file")
    parser.add_argument("--no-audio", action="store_true", help="Position sources without opening an output device")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging verbosity (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser.parse_args(argv)


def run_pipeline(
    use_mock: bool = False,
    config_path: Path = CONFIG_FILE,
    waypoints_path: Path | None = None,
    profiles_path: Path | None = None,
    audio: bool = True,
) -> None:
    if not logging.getLogger().hasHandlers():
        configure_logging("INFO")
    config = ConfigManager(config_path).load()
    waypoints = WaypointStore(waypoints_path)
    waypoints.load()
    profiles = ToneProfileStore(path=profiles_path)
    profiles.load()
    renderer = None
    if not audio:
        renderer = BinauralMixer(sample_rate=config.sample_rate, volume=config.volume)
    pipeline = Pipeline(config, waypoints, profiles, renderer)
    try:
        pipeline.start(use_mock=use_mock)
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("Stopping pipeline...")
    finally:
        pipeline.stop()
        pipeline.join()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    run_pipeline(
        use_mock=args.mock,
        config_path=args.config,
        waypoints_path=args.waypoints,
        profiles_path=args.profiles,
        audio=not args.no_audio,
    )


if __name__ == "__main__":
    main()
