"""
Authoritative playback state container.

Rules:
- Pure data model, immutable snapshots.
- Contains ALL state the playback reducer may ever need.
- Derived logic lives in playback.clock, not here.
"""

from __future__ import annotations

from dataclasses import dataclass

from constants import PLAYBACK_SPEED_DEFAULT, TICK_RATE_DEFAULT
from playback.enums.mode import PlaybackMode


# =============================================================================
# Loop region
# =============================================================================

@dataclass(frozen=True)
class LoopRegion:
    """
    Optional [start, end) frame span that playback wraps inside.

    Invariant: start < end. Out-of-order bounds are swapped at
    construction; equal bounds are rejected.
    """
    start: int
    end: int
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.start == self.end:
            raise ValueError(f"empty loop region at frame {self.start}")
        if self.start > self.end:
            lo, hi = self.end, self.start
            object.__setattr__(self, "start", lo)
            object.__setattr__(self, "end", hi)


# =============================================================================
# Playback state
# =============================================================================

@dataclass(frozen=True)
class PlaybackState:
    """Immutable snapshot of replay playback state."""

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    total_frames: int = 0
    tick_rate: int = TICK_RATE_DEFAULT

    # ------------------------------------------------------------------
    # Cursor / clock
    # ------------------------------------------------------------------
    cursor: int = 0
    mode: PlaybackMode = PlaybackMode.STOPPED
    speed: float = PLAYBACK_SPEED_DEFAULT

    # Wall-clock reading of the previous tick; None right after start,
    # resume, seek or loop wrap so the next tick only re-arms.
    last_tick_ms: float | None = None

    # ------------------------------------------------------------------
    # Scrubbing
    # ------------------------------------------------------------------
    # Play state to restore when the current drag ends
    resume_after_scrub: bool = False

    # ------------------------------------------------------------------
    # Looping
    # ------------------------------------------------------------------
    loop: LoopRegion | None = None

    @property
    def playing(self) -> bool:
        return self.mode is PlaybackMode.PLAYING

    @property
    def scrubbing(self) -> bool:
        return self.mode is PlaybackMode.SCRUBBING

    @property
    def last_frame(self) -> int:
        return max(self.total_frames - 1, 0)
