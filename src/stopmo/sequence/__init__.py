"""
Sequence module for stopmo.

Provides:
- Frame / FrameStore: ordered captured frames with a clamped cursor
- PlaybackClock: looping timed cursor driver
"""

from .frame_store import Frame, FrameStore
from .playback import PlaybackClock, PlaybackState

__all__ = [
    "Frame",
    "FrameStore",
    "PlaybackClock",
    "PlaybackState",
]
