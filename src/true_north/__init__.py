"""
True North - spatial audio compass.

Fuses a compass heading with optional head tracking and plays looping
ping tones from 3D positions so that true north, and any saved waypoint,
is always heard from its real-world direction.
"""

from .angles import HeadingSmoother, normalize, shortest_delta
from .bearing import great_circle_bearing, relative_bearing
from .main import Pipeline, run_pipeline
from .models import (
    NORTH_ID,
    Coordinate,
    HeadAttitude,
    HeadingSample,
    ToneProfile,
    Waypoint,
)
from .orientation import OrientationActor, OrientationFusion
from .renderer import AudioRenderer, BinauralMixer
from .spatial_sources import SpatialSourceManager
from .tone_synthesis import ToneSynthesisError, synthesize

__all__ = [
    'normalize',
    'shortest_delta',
    'HeadingSmoother',
    'great_circle_bearing',
    'relative_bearing',
    'Pipeline',
    'run_pipeline',
    'NORTH_ID',
    'Coordinate',
    'HeadAttitude',
    'HeadingSample',
    'ToneProfile',
    'Waypoint',
    'OrientationFusion',
    'OrientationActor',
    'AudioRenderer',
    'BinauralMixer',
    'SpatialSourceManager',
    'ToneSynthesisError',
    'synthesize',
]
