"""
Spatial source management.

Keeps one looping renderer voice per enabled waypoint (plus true north),
creating and destroying voices as the enabled set changes and moving them
around the listener every frame.

Renderer space: +x right, +y up, -z straight ahead. A source at relative
bearing ``rb`` (0 ahead, positive right) sits at

    x = sin(rb) * d,  z = -cos(rb) * d,  y = cos(rb) * elevation_factor

Sources ahead are lifted and sources behind are lowered, which breaks the
front/back symmetry of azimuth-only placement.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

import numpy as np

from .bearing import great_circle_bearing, relative_bearing
from .config import EngineConfig
from .models import (
    DEFAULT_NORTH_TONE,
    NORTH_ID,
    AudioSource,
    Coordinate,
    SourcePosition,
    ToneProfile,
    Waypoint,
)
from .renderer import AudioRenderer
from .tone_synthesis import ToneSynthesisError, synthesize


logger = logging.getLogger(__name__)


def position_for_relative_bearing(
    relative: float,
    distance: float,
    elevation_factor: float,
) -> SourcePosition:
    theta = math.radians(relative)
    return SourcePosition(
        x=math.sin(theta) * distance,
        y=math.cos(theta) * elevation_factor,
        z=-math.cos(theta) * distance,
    )


def north_position(heading: float, distance: float, elevation_factor: float) -> SourcePosition:
    """North is a direction: its relative bearing is simply ``-heading``."""
    return position_for_relative_bearing(-heading, distance, elevation_factor)


@dataclass
class ReconcileResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class SpatialSourceManager:
    def __init__(
        self,
        renderer: AudioRenderer,
        config: EngineConfig | None = None,
        default_profile: ToneProfile = DEFAULT_NORTH_TONE,
        executor: Optional[Executor] = None,
    ) -> None:
        self.renderer = renderer
        self.config = config or EngineConfig()
        self.default_profile = default_profile
        self._own_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=self.config.synthesis_workers,
            thread_name_prefix="tone-synth",
        )
        self._sources: dict[str, AudioSource] = {}
        # Last known placement, survives source re-creation
        self._positions: dict[str, SourcePosition] = {}
        self._volumes: dict[str, float] = {}
        # update_positions runs on the throttle thread, reconcile on the refresh worker
        self._lock = threading.RLock()
        self.renderer.set_volume(self.config.volume)

    @property
    def active_ids(self) -> set[str]:
        return set(self._sources)

    def source(self, source_id: str) -> Optional[AudioSource]:
        return self._sources.get(source_id)

    def resolve_profile(self, waypoint: Waypoint, profiles: Mapping[str, ToneProfile]) -> ToneProfile:
        profile = profiles.get(waypoint.tone_profile_id)
        if profile is None:
            logger.warning(
                "Waypoint %s references unknown tone profile %s; using %s",
                waypoint.name,
                waypoint.tone_profile_id,
                self.default_profile.name,
            )
            return self.default_profile
        return profile

    def reconcile(
        self,
        waypoints: Iterable[Waypoint],
        profiles: Mapping[str, ToneProfile],
    ) -> ReconcileResult:
        """Make the playing sources match the enabled ``waypoints`` exactly."""
        desired: dict[str, ToneProfile] = {}
        for waypoint in waypoints:
            if waypoint.enabled:
                desired[waypoint.id] = self.resolve_profile(waypoint, profiles)

        result = ReconcileResult()

        with self._lock:
            for source_id in list(self._sources):
                wanted = desired.get(source_id)
                if wanted is None:
                    self._destroy(source_id)
                    self._positions.pop(source_id, None)
                    self._volumes.pop(source_id, None)
                    result.removed.append(source_id)
                elif wanted != self._sources[source_id].profile:
                    logger.info("Tone profile changed for %s; regenerating", source_id)
                    self._destroy(source_id)
                    result.removed.append(source_id)
            to_create = {sid: profile for sid, profile in desired.items() if sid not in self._sources}

        if not to_create:
            if result.changed:
                logger.info("Reconciled sources: -%d active=%d", len(result.removed), len(self._sources))
            return result

        futures: dict[ToneProfile, Future] = {}
        for profile in to_create.values():
            if profile not in futures:
                futures[profile] = self._executor.submit(
                    synthesize,
                    profile,
                    self.config.sample_rate,
                    self.config.min_loop_seconds,
                )

        # Wait for synthesis outside the lock so position updates keep flowing
        buffers: dict[str, np.ndarray] = {}
        for source_id, profile in to_create.items():
            try:
                buffers[source_id] = futures[profile].result()
            except (ToneSynthesisError, MemoryError) as exc:
                logger.warning("Skipping source %s: %r", source_id, exc)
                result.failed.append(source_id)

        with self._lock:
            for source_id, buffer in buffers.items():
                self._create(source_id, to_create[source_id], buffer)
                result.added.append(source_id)

        if result.changed or result.failed:
            logger.info(
                "Reconciled sources: +%d -%d failed=%d active=%d",
                len(result.added),
                len(result.removed),
                len(result.failed),
                len(self._sources),
            )
        return result

    def update_positions(
        self,
        combined_heading: float,
        listener: Optional[Coordinate],
        waypoints: Mapping[str, Waypoint],
    ) -> dict[str, SourcePosition]:
        """Move every active source for the given heading; returns what moved."""
        distance = self.config.presentation_distance
        elevation = self.config.elevation_factor
        moved: dict[str, SourcePosition] = {}

        with self._lock:
            for source_id, source in self._sources.items():
                if source_id == NORTH_ID:
                    position = north_position(combined_heading, distance, elevation)
                else:
                    waypoint = waypoints.get(source_id)
                    # Unknown listener: leave the source where it was
                    if listener is None or waypoint is None or waypoint.coordinate is None:
                        continue
                    bearing = great_circle_bearing(listener, waypoint.coordinate)
                    position = position_for_relative_bearing(
                        relative_bearing(combined_heading, bearing), distance, elevation
                    )
                source.position = position
                self._positions[source_id] = position
                self.renderer.set_position(source_id, position)
                moved[source_id] = position
        return moved

    def set_source_volume(self, source_id: str, volume: float) -> None:
        """Per-source level on top of the master volume; kept across regeneration."""
        volume = float(np.clip(volume, 0.0, 1.0))
        with self._lock:
            self._volumes[source_id] = volume
            source = self._sources.get(source_id)
            if source is None:
                return
            source.volume = volume
            self.renderer.set_source_volume(source_id, volume)

    def set_volume(self, volume: float) -> None:
        self.config.volume = float(np.clip(volume, 0.0, 1.0))
        self.renderer.set_volume(self.config.volume)

    def shutdown(self) -> None:
        with self._lock:
            for source_id in list(self._sources):
                self._destroy(source_id)
        if self._own_executor:
            self._executor.shutdown(wait=True)
        logger.info("Spatial source manager shut down")

    def _create(self, source_id: str, profile: ToneProfile, buffer: np.ndarray) -> None:
        volume = self._volumes.get(source_id, 1.0)
        position = self._positions.get(source_id, SourcePosition())
        self.renderer.create_source(source_id, buffer, self.config.sample_rate)
        self.renderer.set_position(source_id, position)
        self.renderer.set_source_volume(source_id, volume)
        self.renderer.play(source_id)
        self._sources[source_id] = AudioSource(
            source_id=source_id,
            profile=profile,
            buffer=buffer,
            position=position,
            volume=volume,
            playing=True,
        )
        logger.debug("Source %s playing with profile %s", source_id, profile.name)

    def _destroy(self, source_id: str) -> None:
        source = self._sources.pop(source_id)
        self.renderer.stop(source_id)
        self.renderer.release(source_id)
        source.playing = False
        logger.debug("Source %s stopped and released", source_id)
