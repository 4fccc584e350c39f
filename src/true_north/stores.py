from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator, Optional

from .models import BUILTIN_PROFILES, ToneProfile, Waypoint, north_waypoint

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class _RevisionedStore:
    """Bumps ``revision``, saves, and notifies subscribers on every change."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self.revision = 0
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> None:
        """Call ``listener`` with no arguments after every change or load."""
        self._listeners.append(listener)

    def save(self) -> None:
        raise NotImplementedError

    def _changed(self) -> None:
        self.revision += 1
        self.save()
        self._notify()

    def _notify(self) -> None:
        for listener in self._listeners:
            listener()


class WaypointStore(_RevisionedStore):
    """Ordered, id-keyed waypoint list with optional JSON persistence."""

    def __init__(self, path: Optional[Path] = None) -> None:
        super().__init__(path)
        self._waypoints: list[Waypoint] = []

    def __iter__(self) -> Iterator[Waypoint]:
        return iter(list(self._waypoints))

    def __len__(self) -> int:
        return len(self._waypoints)

    def get(self, waypoint_id: str) -> Optional[Waypoint]:
        return next((w for w in self._waypoints if w.id == waypoint_id), None)

    def by_id(self) -> dict[str, Waypoint]:
        return {w.id: w for w in self._waypoints}

    def add(self, waypoint: Waypoint) -> None:
        if self.get(waypoint.id) is not None:
            raise ValueError(f"Waypoint {waypoint.id} already exists")
        self._waypoints.append(waypoint)
        self._changed()

    def update(self, waypoint: Waypoint) -> None:
        for index, existing in enumerate(self._waypoints):
            if existing.id == waypoint.id:
                self._waypoints[index] = waypoint
                self._changed()
                return
        logger.debug("Update for unknown waypoint %s ignored", waypoint.id)

    def delete(self, waypoint_id: str) -> None:
        before = len(self._waypoints)
        self._waypoints = [w for w in self._waypoints if w.id != waypoint_id]
        if len(self._waypoints) != before:
            self._changed()

    def toggle(self, waypoint_id: str) -> None:
        waypoint = self.get(waypoint_id)
        if waypoint is None:
            logger.debug("Toggle for unknown waypoint %s ignored", waypoint_id)
            return
        self.update(replace(waypoint, enabled=not waypoint.enabled))

    def desired_sources(self, north_enabled: bool, north_profile_id: str) -> list[Waypoint]:
        """Enabled waypoints, led by true north when it is switched on."""
        sources = [w for w in self._waypoints if w.enabled]
        if north_enabled:
            sources.insert(0, north_waypoint(north_profile_id))
        return sources

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            self._waypoints = []
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            waypoints = [Waypoint.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load waypoints from %s: %s", self.path, e)
            self._waypoints = []
            return
        self._waypoints = waypoints
        self.revision += 1
        logger.info("Loaded %d waypoints from %s", len(waypoints), self.path)
        self._notify()

    def save(self) -> None:
        if self.path is None:
            return
        try:
            with open(self.path, "w") as f:
                json.dump([w.to_dict() for w in self._waypoints], f, indent=4)
            logger.debug("Saved %d waypoints to %s", len(self._waypoints), self.path)
        except OSError as e:
            logger.error("Failed to save waypoints to %s: %s", self.path, e)


class ToneProfileStore(_RevisionedStore):
    """Tone profiles keyed by id; the first profile is the default."""

    def __init__(self, profiles: Optional[list[ToneProfile]] = None, path: Optional[Path] = None) -> None:
        super().__init__(path)
        self._profiles: list[ToneProfile] = list(profiles) if profiles is not None else list(BUILTIN_PROFILES)
        if not self._profiles:
            raise ValueError("ToneProfileStore needs at least one profile")

    def __iter__(self) -> Iterator[ToneProfile]:
        return iter(list(self._profiles))

    def __len__(self) -> int:
        return len(self._profiles)

    @property
    def default_profile(self) -> ToneProfile:
        return self._profiles[0]

    def profile(self, profile_id: str) -> Optional[ToneProfile]:
        return next((p for p in self._profiles if p.id == profile_id), None)

    def by_id(self) -> dict[str, ToneProfile]:
        return {p.id: p for p in self._profiles}

    def upsert(self, profile: ToneProfile) -> None:
        """Add ``profile`` or replace the stored profile with the same id."""
        for index, existing in enumerate(self._profiles):
            if existing.id == profile.id:
                self._profiles[index] = profile
                break
        else:
            self._profiles.append(profile)
        self._changed()

    def delete(self, profile_id: str) -> None:
        remaining = [p for p in self._profiles if p.id != profile_id]
        if not remaining:
            raise ValueError("Cannot delete the last tone profile")
        if len(remaining) != len(self._profiles):
            self._profiles = remaining
            self._changed()

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            profiles = [ToneProfile.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load tone profiles from %s: %s", self.path, e)
            return
        if profiles:
            self._profiles = profiles
            self.revision += 1
            logger.info("Loaded %d tone profiles from %s", len(profiles), self.path)
            self._notify()

    def save(self) -> None:
        if self.path is None:
            return
        try:
            with open(self.path, "w") as f:
                json.dump([p.to_dict() for p in self._profiles], f, indent=4)
        except OSError as e:
            logger.error("Failed to save tone profiles to %s: %s", self.path, e)
