"""
Ping/echo tone synthesis.

Renders one loopable mono buffer per ``ToneProfile``. Each cycle of
``ping_interval`` seconds holds:

- a ping: four harmonic partials under an exponential decay, the
  fundamental swept downward over the ping, plus a short high-frequency
  click at onset for front/back cues
- an echo: the same harmonic stack, quieter and with its own decay,
  starting ``echo_delay`` seconds into the cycle (wrapping into the next
  cycle if it runs past the end)

Everything is summed and soft-clipped with tanh. The function is pure and
deterministic, and fast enough to run per profile edit, but it is meant to
be called from a worker thread rather than the audio callback.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .models import ToneProfile


logger = logging.getLogger(__name__)

SAMPLE_RATE = 44_100
MIN_LOOP_SECONDS = 2.0
MAX_LOOP_SECONDS = 60.0

# Relative level of partials 1x..4x before the per-profile multipliers
PARTIAL_WEIGHTS = (1.0, 0.5, 0.25, 0.125)
OUTPUT_GAIN = 0.5


class ToneSynthesisError(ValueError):
    """Raised when a profile cannot produce a playable buffer."""


def loop_duration(profile: ToneProfile, min_duration: float = MIN_LOOP_SECONDS) -> float:
    """Whole number of ping intervals lasting at least ``min_duration`` seconds."""
    cycles = max(1, math.ceil(min_duration / profile.ping_interval - 1e-9))
    return cycles * profile.ping_interval


def _validate(profile: ToneProfile, sample_rate: int) -> None:
    if sample_rate <= 0:
        raise ToneSynthesisError(f"sample_rate must be positive, got {sample_rate}")
    numeric = {
        "frequency": profile.frequency,
        "ping_duration": profile.ping_duration,
        "ping_interval": profile.ping_interval,
        "echo_delay": profile.echo_delay,
        "echo_attenuation": profile.echo_attenuation,
        "transient_frequency": profile.transient_frequency,
        "transient_amplitude": profile.transient_amplitude,
        "transient_decay": profile.transient_decay,
        "ping_envelope_decay": profile.ping_envelope_decay,
        "echo_envelope_decay": profile.echo_envelope_decay,
        "frequency_sweep_amount": profile.frequency_sweep_amount,
    }
    for index, value in enumerate(profile.harmonic_amplitudes, start=1):
        numeric[f"harmonic{index}_amplitude"] = value
    for name, value in numeric.items():
        if not math.isfinite(value):
            raise ToneSynthesisError(f"{profile.name}: {name} is not finite ({value})")
    for name in ("frequency", "ping_duration", "ping_interval"):
        if numeric[name] <= 0:
            raise ToneSynthesisError(f"{profile.name}: {name} must be positive, got {numeric[name]}")
    if profile.ping_duration >= profile.ping_interval:
        logger.debug(
            "Profile %s: ping_duration %.3f >= ping_interval %.3f; pings will run together",
            profile.name,
            profile.ping_duration,
            profile.ping_interval,
        )


def _harmonic_stack(
    profile: ToneProfile,
    elapsed: np.ndarray,
    progress: np.ndarray,
) -> np.ndarray:
    """Harmonic partials with the swept fundamental, unenveloped."""
    # Phase of a linear sweep f(t) = f0 * (1 - s * t / d), integrated over t
    sweep = profile.frequency_sweep_amount
    phase = 2.0 * np.pi * profile.frequency * (
        elapsed - sweep * elapsed * progress * 0.5
    )
    stack = np.zeros_like(elapsed)
    for partial, (weight, amplitude) in enumerate(
        zip(PARTIAL_WEIGHTS, profile.harmonic_amplitudes), start=1
    ):
        if amplitude == 0.0:
            continue
        stack += weight * amplitude * np.sin(partial * phase)
    return stack


def synthesize(
    profile: ToneProfile,
    sample_rate: int = SAMPLE_RATE,
    min_duration: float = MIN_LOOP_SECONDS,
) -> np.ndarray:
    """Render the looping mono buffer for ``profile`` as float32."""
    _validate(profile, sample_rate)

    duration_s = loop_duration(profile, min_duration)
    if duration_s > MAX_LOOP_SECONDS:
        raise ToneSynthesisError(
            f"{profile.name}: loop of {duration_s:.1f} s exceeds {MAX_LOOP_SECONDS:.0f} s"
        )
    n_samples = int(round(duration_s * sample_rate))
    if n_samples <= 0:
        raise ToneSynthesisError(f"{profile.name}: loop would be empty")

    t = np.arange(n_samples, dtype=np.float64) / sample_rate
    cycle = np.mod(t, profile.ping_interval)
    duration = profile.ping_duration

    output = np.zeros(n_samples, dtype=np.float64)

    # === PING ===
    ping_mask = cycle < duration
    if ping_mask.any():
        elapsed = cycle[ping_mask]
        progress = elapsed / duration
        envelope = np.exp(-profile.ping_envelope_decay * progress)
        output[ping_mask] += envelope * _harmonic_stack(profile, elapsed, progress)

        click = profile.transient_amplitude * np.exp(-profile.transient_decay * elapsed)
        output[ping_mask] += click * np.sin(2.0 * np.pi * profile.transient_frequency * elapsed)

    # === ECHO ===
    echo_elapsed = np.mod(cycle - profile.echo_delay, profile.ping_interval)
    echo_mask = echo_elapsed < duration
    if profile.echo_attenuation != 0.0 and echo_mask.any():
        elapsed = echo_elapsed[echo_mask]
        progress = elapsed / duration
        envelope = profile.echo_attenuation * np.exp(-profile.echo_envelope_decay * progress)
        output[echo_mask] += envelope * _harmonic_stack(profile, elapsed, progress)

    # Soft clip where ping and echo overlap
    buffer = (np.tanh(output) * OUTPUT_GAIN).astype(np.float32)

    if buffer.size == 0 or not np.all(np.isfinite(buffer)):
        raise ToneSynthesisError(f"{profile.name}: synthesis produced an unusable buffer")

    logger.debug(
        "Synthesized %s: %d samples (%.2f s) at %d Hz",
        profile.name,
        buffer.size,
        buffer.size / sample_rate,
        sample_rate,
    )
    return buffer


__all__ = [
    "SAMPLE_RATE",
    "MIN_LOOP_SECONDS",
    "MAX_LOOP_SECONDS",
    "ToneSynthesisError",
    "loop_duration",
    "synthesize",
]
