"""
Circular-angle helpers shared by the heading and positioning code.

All headings are degrees clockwise from north in [0, 360). Differences are
always taken along the short arc so nothing jumps at the 0/360 seam.
"""

from __future__ import annotations

import math
from typing import Optional


def normalize(angle: float) -> float:
    """Reduce ``angle`` into [0, 360)."""
    normalized = math.fmod(angle, 360.0)
    if normalized < 0:
        normalized += 360.0
    # -1e-15 + 360 rounds to 360.0
    if normalized >= 360.0:
        normalized = 0.0
    return normalized


def shortest_delta(from_angle: float, to_angle: float) -> float:
    """Signed turn in (-180, 180] that takes ``from_angle`` onto ``to_angle``."""
    delta = normalize(to_angle - from_angle)
    if delta > 180.0:
        delta -= 360.0
    return delta


class HeadingSmoother:
    """
    First-order low-pass filter over a circular quantity.

    Each update moves the state a fraction ``alpha`` of the way towards the
    new sample along the shortest arc. Larger alpha is more responsive and
    less stable.
    """

    def __init__(self, alpha: float, initial: Optional[float] = None) -> None:
        if not (0.0 < alpha <= 1.0):
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self._value: Optional[float] = None if initial is None else normalize(initial)

    @property
    def value(self) -> Optional[float]:
        return self._value

    def update(self, sample: float) -> float:
        if self._value is None:
            self._value = normalize(sample)
            return self._value
        delta = shortest_delta(self._value, sample)
        self._value = normalize(self._value + delta * self.alpha)
        return self._value

    def reset(self, value: Optional[float] = None) -> None:
        self._value = None if value is None else normalize(value)


def samples_to_settle(alpha: float, fraction: float = 0.9) -> int:
    """Number of updates needed to cover ``fraction`` of a step change."""
    if not (0.0 < alpha <= 1.0):
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    if not (0.0 < fraction < 1.0):
        raise ValueError(f"fraction must be in (0, 1), got {fraction}")
    if alpha == 1.0:
        return 1
    return math.ceil(math.log(1.0 - fraction) / math.log(1.0 - alpha))


__all__ = [
    "normalize",
    "shortest_delta",
    "HeadingSmoother",
    "samples_to_settle",
]
