from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Optional

import numpy as np

from .angles import normalize


NORTH_ID = "north"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def format(self) -> str:
        return "%.4f, %.4f" % (self.latitude, self.longitude)


@dataclass(frozen=True)
class ToneProfile:
    """Acoustic recipe for one looping ping/echo tone.

    Instances are never edited in place; ``with_changes`` returns a copy that
    keeps the same ``id`` so dependents can tell an edit from a new profile.
    """

    name: str
    frequency: float = 830.0
    ping_duration: float = 0.15
    ping_interval: float = 5.0
    echo_delay: float = 5.0
    echo_attenuation: float = 0.28

    fundamental_amplitude: float = 1.0
    harmonic2_amplitude: float = 1.0
    harmonic3_amplitude: float = 1.0
    harmonic4_amplitude: float = 1.0

    # High-frequency click at ping onset, helps front/back localization
    transient_frequency: float = 3000.0
    transient_amplitude: float = 0.3
    transient_decay: float = 50.0

    ping_envelope_decay: float = 3.0
    echo_envelope_decay: float = 4.0
    frequency_sweep_amount: float = 0.4

    id: str = field(default_factory=_new_id)

    @property
    def harmonic_amplitudes(self) -> tuple[float, float, float, float]:
        return (
            self.fundamental_amplitude,
            self.harmonic2_amplitude,
            self.harmonic3_amplitude,
            self.harmonic4_amplitude,
        )

    def with_changes(self, **changes: Any) -> "ToneProfile":
        if "id" in changes:
            raise ValueError("ToneProfile id cannot be changed")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToneProfile":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


DEFAULT_NORTH_TONE = ToneProfile(name="Default North Tone", id="default-north-tone")

WARM_ALTERNATE_TONE = ToneProfile(
    name="Warm Alternate",
    frequency=600.0,
    harmonic2_amplitude=0.8,
    harmonic3_amplitude=0.6,
    harmonic4_amplitude=0.4,
    transient_frequency=2400.0,
    transient_amplitude=0.25,
    id="warm-alternate",
)

BUILTIN_PROFILES: tuple[ToneProfile, ...] = (DEFAULT_NORTH_TONE, WARM_ALTERNATE_TONE)


@dataclass(frozen=True)
class Waypoint:
    name: str
    coordinate: Optional[Coordinate]
    tone_profile_id: str
    enabled: bool = True
    id: str = field(default_factory=_new_id)

    @property
    def is_north(self) -> bool:
        return self.id == NORTH_ID

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "tone_profile_id": self.tone_profile_id,
            "enabled": self.enabled,
        }
        if self.coordinate is not None:
            data["latitude"] = self.coordinate.latitude
            data["longitude"] = self.coordinate.longitude
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Waypoint":
        coordinate = None
        if data.get("latitude") is not None and data.get("longitude") is not None:
            coordinate = Coordinate(float(data["latitude"]), float(data["longitude"]))
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            coordinate=coordinate,
            tone_profile_id=str(data["tone_profile_id"]),
            enabled=bool(data.get("enabled", True)),
        )


def north_waypoint(tone_profile_id: str = DEFAULT_NORTH_TONE.id, enabled: bool = True) -> Waypoint:
    return Waypoint(
        name="True North",
        coordinate=None,
        tone_profile_id=tone_profile_id,
        enabled=enabled,
        id=NORTH_ID,
    )


@dataclass(frozen=True)
class HeadingSample:
    """Compass reading. A negative ``true_heading`` or ``accuracy`` means unavailable."""

    magnetic_heading: float
    accuracy: float = -1.0
    true_heading: float = -1.0

    @property
    def heading(self) -> float:
        return self.true_heading if self.true_heading >= 0 else self.magnetic_heading


@dataclass(frozen=True)
class HeadAttitude:
    """Head-mounted sensor attitude in radians."""

    yaw: float
    pitch: float = 0.0
    roll: float = 0.0


@dataclass
class OrientationState:
    device_heading: float = 0.0
    smoothed_device_heading: float = 0.0
    raw_combined_heading: float = 0.0
    combined_heading: float = 0.0
    head_attitude: Optional[HeadAttitude] = None
    head_tracking_active: bool = False
    heading_accuracy: float = -1.0
    calibration_needed: bool = False
    locked: bool = False
    locked_reference: Optional[float] = None
    locked_head_yaw: Optional[float] = None
    listener: Optional[Coordinate] = None


@dataclass(frozen=True)
class OrientationSnapshot:
    device_heading: float
    smoothed_device_heading: float
    raw_combined_heading: float
    combined_heading: float
    head_tracking_active: bool
    heading_accuracy: float
    calibration_needed: bool
    locked: bool
    listener: Optional[Coordinate] = None

    @property
    def offset(self) -> float:
        """Angle between where the device points and where the audio is steered."""
        return normalize(self.device_heading - self.combined_heading)


@dataclass(frozen=True)
class SourcePosition:
    """Renderer-space position: +x right, +y up, -z straight ahead."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @property
    def distance(self) -> float:
        return float(np.sqrt(self.x**2 + self.y**2 + self.z**2))


@dataclass
class AudioSource:
    source_id: str
    profile: ToneProfile
    buffer: np.ndarray
    position: SourcePosition = field(default_factory=SourcePosition)
    volume: float = 1.0
    playing: bool = False
