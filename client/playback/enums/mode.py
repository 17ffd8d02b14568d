"""
Playback mode enumeration.

Rules:
- This enum defines ONLY the playback control states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in playback.clock.
"""

from __future__ import annotations

from enum import Enum


class PlaybackMode(str, Enum):
    """
    Control state of the replay cursor.

    STOPPED:
        Cursor holds still (initial state, paused, or end of recording).

    PLAYING:
        Cursor advances with wall-clock time * tick_rate * speed.

    SCRUBBING:
        User is dragging the seek control; playback is suspended and
        prefetch is skipped until the drag ends.
    """

    STOPPED = "STOPPED"
    PLAYING = "PLAYING"
    SCRUBBING = "SCRUBBING"
