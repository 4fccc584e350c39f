from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from .models import DEFAULT_NORTH_TONE

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("true_north_config.json")


@dataclass
class EngineConfig:
    # Heading smoothing
    display_smoothing_alpha: float = 0.3
    audio_smoothing_alpha: float = 0.1
    calibration_accuracy_threshold: float = 25.0

    # Source placement
    presentation_distance: float = 5.0
    elevation_factor: float = 2.0
    update_interval_s: float = 0.016

    # Synthesis
    sample_rate: int = 44_100
    min_loop_seconds: float = 2.0
    synthesis_workers: int = 2

    # Playback
    volume: float = 0.5
    blocksize: int = 1024
    reference_distance: float = 1.0
    max_distance: float = 100.0
    rolloff_factor: float = 0.5
    rear_cutoff_hz: float = 3500.0

    # True north source
    north_enabled: bool = True
    north_tone_profile_id: str = DEFAULT_NORTH_TONE.id

    sensor_queue_size: int = 64

    def __post_init__(self) -> None:
        for name in ("display_smoothing_alpha", "audio_smoothing_alpha"):
            value = getattr(self, name)
            if not (0.0 < value <= 1.0):
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        if self.presentation_distance <= 0:
            raise ValueError("presentation_distance must be positive")
        if self.update_interval_s <= 0:
            raise ValueError("update_interval_s must be positive")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if not (0.0 <= self.volume <= 1.0):
            raise ValueError(f"volume must be in [0, 1], got {self.volume}")
        if self.reference_distance <= 0 or self.max_distance < self.reference_distance:
            raise ValueError("distance attenuation requires 0 < reference_distance <= max_distance")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ConfigManager:
    def __init__(self, path: Path = CONFIG_FILE) -> None:
        self.path = Path(path)

    def load(self) -> EngineConfig:
        if not self.path.exists():
            return EngineConfig()

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config root must be a JSON object")
            # Stored values override defaults; missing keys keep their default
            return EngineConfig.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to load config from %s: %s", self.path, e)
            return EngineConfig()

    def save(self, config: EngineConfig) -> None:
        try:
            with open(self.path, "w") as f:
                json.dump(config.to_dict(), f, indent=4)
            logger.info("Configuration saved to %s", self.path)
        except OSError as e:
            logger.error("Failed to save config to %s: %s", self.path, e)
