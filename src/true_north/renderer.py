"""
3D audio renderer boundary.

``AudioRenderer`` is the sink the source manager drives: looping mono
buffers, per-source positions and play/stop commands. Any audio stack with
real HRTF spatialization can implement it.

``BinauralMixer`` is the bundled implementation. It is not a full HRTF; it
approximates one with:
- constant-power panning from azimuth (interaural level difference)
- a sub-millisecond far-ear delay (interaural time difference)
- a streaming low-pass "head shadow" blended in for sources behind
- exponential distance attenuation

``SoundcardRenderer`` streams that mix to the default output device.
"""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, TYPE_CHECKING

import numpy as np
from scipy.signal import butter, sosfilt

from .models import SourcePosition

try:
    import soundcard as sc
except (ImportError, RuntimeError, OSError):  # pragma: no cover - optional dependency for playback
    sc = None

if TYPE_CHECKING:  # pragma: no cover - typing only
    from soundcard import Player
else:
    Player = Any


logger = logging.getLogger(__name__)

MAX_ITD_S = 0.0007


class AudioRenderer(ABC):
    """Capability interface for a positional audio output."""

    @abstractmethod
    def create_source(self, source_id: str, buffer: np.ndarray, sample_rate: int) -> None:
        ...

    @abstractmethod
    def set_position(self, source_id: str, position: SourcePosition) -> None:
        ...

    @abstractmethod
    def play(self, source_id: str) -> None:
        ...

    @abstractmethod
    def stop(self, source_id: str) -> None:
        ...

    @abstractmethod
    def release(self, source_id: str) -> None:
        ...

    @abstractmethod
    def set_source_volume(self, source_id: str, volume: float) -> None:
        ...

    @abstractmethod
    def set_volume(self, volume: float) -> None:
        ...


@dataclass
class _Voice:
    buffer: np.ndarray
    sos: np.ndarray
    position: SourcePosition = field(default_factory=SourcePosition)
    gain: float = 1.0
    playing: bool = False
    cursor: int = 0
    zi: Optional[np.ndarray] = None


class BinauralMixer(AudioRenderer):
    def __init__(
        self,
        sample_rate: int = 44_100,
        volume: float = 0.5,
        reference_distance: float = 1.0,
        max_distance: float = 100.0,
        rolloff_factor: float = 0.5,
        rear_cutoff_hz: float = 3500.0,
    ) -> None:
        self.sample_rate = sample_rate
        self.volume = volume
        self.reference_distance = reference_distance
        self.max_distance = max_distance
        self.rolloff_factor = rolloff_factor
        nyquist = sample_rate / 2
        self._rear_sos = butter(2, min(rear_cutoff_hz / nyquist, 0.999), btype="low", output="sos")
        self._voices: dict[str, _Voice] = {}
        self._lock = threading.Lock()

    @property
    def source_ids(self) -> list[str]:
        with self._lock:
            return list(self._voices)

    def is_playing(self, source_id: str) -> bool:
        with self._lock:
            voice = self._voices.get(source_id)
            return voice is not None and voice.playing

    def create_source(self, source_id: str, buffer: np.ndarray, sample_rate: int) -> None:
        if sample_rate != self.sample_rate:
            raise ValueError(
                f"Buffer sample rate {sample_rate} does not match mixer rate {self.sample_rate}"
            )
        if buffer.ndim != 1 or buffer.size == 0:
            raise ValueError("Source buffer must be a non-empty mono array")
        with self._lock:
            if source_id in self._voices:
                logger.debug("Replacing existing voice %s", source_id)
            self._voices[source_id] = _Voice(buffer=buffer.astype(np.float32, copy=False), sos=self._rear_sos)
        logger.debug("Voice %s created (%d samples)", source_id, buffer.size)

    def set_position(self, source_id: str, position: SourcePosition) -> None:
        with self._lock:
            voice = self._voices.get(source_id)
            if voice is None:
                logger.debug("Position for unknown voice %s ignored", source_id)
                return
            voice.position = position

    def play(self, source_id: str) -> None:
        with self._lock:
            voice = self._voices.get(source_id)
            if voice is not None:
                voice.playing = True

    def stop(self, source_id: str) -> None:
        with self._lock:
            voice = self._voices.get(source_id)
            if voice is not None:
                voice.playing = False
                voice.cursor = 0
                voice.zi = None

    def release(self, source_id: str) -> None:
        with self._lock:
            self._voices.pop(source_id, None)
        logger.debug("Voice %s released", source_id)

    def set_source_volume(self, source_id: str, volume: float) -> None:
        with self._lock:
            voice = self._voices.get(source_id)
            if voice is not None:
                voice.gain = float(np.clip(volume, 0.0, 1.0))

    def set_volume(self, volume: float) -> None:
        self.volume = float(np.clip(volume, 0.0, 1.0))

    def distance_gain(self, distance: float) -> float:
        """Exponential attenuation model clamped between reference and max distance."""
        clamped = min(max(distance, self.reference_distance), self.max_distance)
        return (clamped / self.reference_distance) ** (-self.rolloff_factor)

    def render(self, frames: int) -> np.ndarray:
        """Mix every playing voice into a (frames, 2) float32 block."""
        out = np.zeros((frames, 2), dtype=np.float32)
        with self._lock:
            for voice in self._voices.values():
                if voice.playing:
                    self._mix_voice(voice, out)
        out *= self.volume
        np.clip(out, -1.0, 1.0, out=out)
        return out

    def _mix_voice(self, voice: _Voice, out: np.ndarray) -> None:
        frames = out.shape[0]
        length = voice.buffer.size
        pos = voice.position
        distance = pos.distance

        # Azimuth: 0 ahead (-z), positive to the right
        azimuth = math.atan2(pos.x, -pos.z) if distance > 1e-9 else 0.0
        pan = math.sin(azimuth)
        pan_angle = (pan + 1.0) * math.pi / 4.0
        gain = self.distance_gain(distance) * voice.gain
        gain_left = math.cos(pan_angle) * gain
        gain_right = math.sin(pan_angle) * gain

        itd = int(round(abs(pan) * MAX_ITD_S * self.sample_rate))
        delay_left = itd if pan > 0 else 0
        delay_right = itd if pan < 0 else 0

        idx = (voice.cursor + np.arange(frames)) % length
        left = voice.buffer[(idx - delay_left) % length].astype(np.float64)
        right = voice.buffer[(idx - delay_right) % length].astype(np.float64)

        # Head shadow: blend in a low-passed copy as the source moves behind
        rear = max(0.0, pos.z / distance) if distance > 1e-9 else 0.0
        stereo = np.stack([left, right], axis=0)
        if voice.zi is None:
            voice.zi = np.zeros((voice.sos.shape[0], 2, 2))
        shadowed, voice.zi = sosfilt(voice.sos, stereo, axis=1, zi=voice.zi)
        if rear > 0.0:
            stereo = (1.0 - rear) * stereo + rear * shadowed

        out[:, 0] += (stereo[0] * gain_left).astype(np.float32)
        out[:, 1] += (stereo[1] * gain_right).astype(np.float32)
        voice.cursor = int((voice.cursor + frames) % length)


class SoundcardRenderer(BinauralMixer):
    """BinauralMixer output streamed to the default speaker."""

    def __init__(self, blocksize: int = 1024, **mixer_kwargs: Any) -> None:
        super().__init__(**mixer_kwargs)
        self.blocksize = blocksize
        self._player: Optional[Player] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def __enter__(self) -> "SoundcardRenderer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def start(self) -> None:
        if self._thread is not None:
            logger.debug("SoundcardRenderer.start called but thread already running")
            return
        if sc is None:
            raise RuntimeError(
                "soundcard package is required for playback. Install it with 'pip install soundcard' or run with --mock."
            )

        speaker = sc.default_speaker()
        if speaker is None:
            raise RuntimeError("No default speaker found for playback.")
        logger.info("Selected default speaker '%s' for playback", speaker.name)

        self._player = speaker.player(samplerate=self.sample_rate, channels=2, blocksize=self.blocksize)
        self._player.__enter__()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._playback_worker, daemon=True, name="playback")
        self._thread.start()
        logger.info(
            "Playback thread started (samplerate=%s, blocksize=%s)",
            self.sample_rate,
            self.blocksize,
        )

    def close(self) -> None:
        if self._thread is None:
            logger.debug("SoundcardRenderer.close called but no thread running")
            return
        assert self._stop_event is not None
        self._stop_event.set()
        self._thread.join(timeout=1.5)
        self._thread = None
        self._stop_event = None
        if self._player is not None:
            self._player.__exit__(None, None, None)
            self._player = None
        logger.info("Playback stopped")

    def _playback_worker(self) -> None:
        assert self._player is not None
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            block = self.render(self.blocksize)
            try:
                self._player.play(block)
            except Exception as exc:  # pragma: no cover - hardware failure
                logger.exception("Player error while streaming audio: %s", exc)
                break
        logger.debug("Playback thread exiting")


__all__ = [
    "AudioRenderer",
    "BinauralMixer",
    "SoundcardRenderer",
]
