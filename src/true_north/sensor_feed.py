from __future__ import annotations

import json
import logging
import math
import random
import time
from typing import Any, Iterable, Iterator, Literal, Optional, Tuple, Union

from .models import Coordinate, HeadAttitude, HeadingSample
from .orientation import OrientationActor


logger = logging.getLogger(__name__)

SensorKind = Literal["heading", "head", "location", "lock"]
SensorEvent = Tuple[SensorKind, Union[HeadingSample, HeadAttitude, Coordinate, bool, None]]


def _number(data: dict[str, Any], key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if value is None:
        raise ValueError(f"missing field '{key}'")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"field '{key}' is not a number: {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"field '{key}' is not finite")
    return number


def parse_sensor_event(line: str) -> SensorEvent:
    """Parse one JSON line from an external sensor bridge.

    Accepted shapes::

        {"type": "heading", "heading": 12.5, "accuracy": 5, "true_heading": 14.0}
        {"type": "head", "yaw": 0.1, "pitch": 0.0, "roll": 0.0}
        {"type": "head_lost"}
        {"type": "location", "latitude": 51.5, "longitude": -0.12}
        {"type": "location_lost"}
        {"type": "lock", "locked": true}      # omit "locked" to toggle
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc}") from None
    if not isinstance(data, dict):
        raise ValueError("sensor event must be a JSON object")

    kind = data.get("type")
    if kind == "heading":
        return "heading", HeadingSample(
            magnetic_heading=_number(data, "heading"),
            accuracy=_number(data, "accuracy", -1.0),
            true_heading=_number(data, "true_heading", -1.0),
        )
    if kind == "head":
        return "head", HeadAttitude(
            yaw=_number(data, "yaw"),
            pitch=_number(data, "pitch", 0.0),
            roll=_number(data, "roll", 0.0),
        )
    if kind == "head_lost":
        return "head", None
    if kind == "location":
        return "location", Coordinate(_number(data, "latitude"), _number(data, "longitude"))
    if kind == "location_lost":
        return "location", None
    if kind == "lock":
        locked = data.get("locked")
        return "lock", None if locked is None else bool(locked)
    raise ValueError(f"unknown sensor event type: {kind!r}")


def dispatch(actor: OrientationActor, event: SensorEvent) -> None:
    kind, payload = event
    if kind == "heading":
        if not isinstance(payload, HeadingSample):
            raise TypeError(f"heading event carries {payload!r}")
        actor.submit_heading(payload)
    elif kind == "head":
        actor.submit_head_attitude(payload)  # type: ignore[arg-type]
    elif kind == "location":
        actor.submit_location(payload)  # type: ignore[arg-type]
    elif kind == "lock":
        if payload is None:
            actor.toggle_lock()
        else:
            actor.set_locked(bool(payload))
    else:
        raise ValueError(f"unknown sensor event kind: {kind!r}")


def line_sensor_stream(lines: Iterable[str]) -> Iterator[SensorEvent]:
    """Parse sensor lines, logging and skipping the malformed ones."""
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield parse_sensor_event(line)
        except ValueError as exc:
            logger.warning("Skipping sensor line %d: %s", number, exc)


def offline_sensor_stream(
    duration_s: float = 30.0,
    seed: int | None = None,
    interval_s: float = 0.05,
    listener: Coordinate = Coordinate(51.5007, -0.1246),
) -> Iterator[SensorEvent]:
    """Yield synthetic sensor events for demo/testing.

    The simulated listener slowly turns their body, looks around with
    headphones on, and now and then loses the head tracker.
    """
    rng = random.Random(seed)
    start = time.time()
    yield "location", listener
    body_heading = rng.uniform(0, 360)
    head_connected = True
    step = 0
    while time.time() - start < duration_s:
        body_heading = (body_heading + rng.gauss(0.5, 2.0)) % 360
        accuracy = rng.choice([5.0, 10.0, 15.0, 30.0, -1.0]) if step % 50 == 0 else 10.0
        yield "heading", HeadingSample(
            magnetic_heading=(body_heading + rng.gauss(0, 1.5)) % 360,
            accuracy=accuracy,
        )

        if rng.random() < 0.01:
            head_connected = not head_connected
            if not head_connected:
                yield "head", None
        if head_connected:
            yaw = math.radians(45.0 * math.sin(step * interval_s * 0.8))
            yield "head", HeadAttitude(yaw=yaw, pitch=rng.gauss(0, 0.02), roll=rng.gauss(0, 0.02))

        step += 1
        time.sleep(interval_s)
