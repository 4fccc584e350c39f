from __future__ import annotations

import math

from .angles import normalize, shortest_delta
from .models import Coordinate


def great_circle_bearing(origin: Coordinate, destination: Coordinate) -> float:
    """Initial great-circle bearing from ``origin`` to ``destination`` in [0, 360).

    0 is north, 90 east. Identical coordinates have no defined bearing and
    return 0.0.
    """
    if origin == destination:
        return 0.0

    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(destination.latitude)
    d_lon = math.radians(destination.longitude - origin.longitude)

    y = math.sin(d_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)
    return normalize(math.degrees(math.atan2(y, x)))


def relative_bearing(heading: float, bearing: float) -> float:
    """Turn needed to face ``bearing`` from ``heading``; positive turns right."""
    return shortest_delta(heading, bearing)
