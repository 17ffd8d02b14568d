"""
CONSTANTS
---------
Single source of truth for all behavioral tuning in the telemetry core.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Live Ring Buffer
# =============================================================================

LIVE_BUFFER_CAPACITY_DEFAULT: Final[int] = 3_600

# Live tick rate assumed for throughput reporting when no replay is active
LIVE_TICK_RATE_DEFAULT: Final[int] = 60

# If the newest live sample is older than this, the trailing edge of the
# live window is pinned to the newest sample instead of wall-clock "now".
LIVE_STALL_THRESHOLD_MS: Final[int] = 2_000
LIVE_STALL_LEAD_MS: Final[int] = 500

# =============================================================================
# Replay Cache
# =============================================================================

TICK_RATE_DEFAULT: Final[int] = 60

# Chunk span and cache budget are expressed in seconds of tick-time and
# converted to frames once the tick rate is known.
CHUNK_SECONDS: Final[int] = 5
MAX_CACHE_SECONDS: Final[int] = 120

# Prefetch window around the cursor (tick-time)
PREFETCH_BEHIND_S: Final[int] = 30
PREFETCH_AHEAD_S: Final[int] = 60

# Debounce delays for scrub-driven loads
SCRUB_DEBOUNCE_MS: Final[int] = 200
SEEK_COMMIT_DEBOUNCE_MS: Final[int] = 50

# =============================================================================
# Playback
# =============================================================================

PLAYBACK_SPEED_MIN: Final[float] = 0.1
PLAYBACK_SPEED_MAX: Final[float] = 16.0
PLAYBACK_SPEED_DEFAULT: Final[float] = 1.0

# =============================================================================
# Window Query
# =============================================================================

WINDOW_MS_DEFAULT: Final[int] = 10_000

# =============================================================================
# Observability
# =============================================================================

THROUGHPUT_WINDOW_MS: Final[int] = 2_000

# =============================================================================
# Helper Functions
# =============================================================================

def frame_time_ms(frame: int, tick_rate: int) -> float:
    """
    Convert a frame index to recording time in milliseconds.

    Defensive behavior:
    - Non-positive tick rate returns 0.0 instead of dividing by zero.
    """
    if tick_rate <= 0:
        return 0.0
    return frame / tick_rate * 1000.0


def ms_to_frames(duration_ms: float, tick_rate: int) -> int:
    """
    Convert a duration in milliseconds to whole frames (floor).

    Defensive behavior:
    - Non-positive input returns 0.
    """
    if duration_ms <= 0 or tick_rate <= 0:
        return 0
    return int(duration_ms / 1000.0 * tick_rate)


def chunk_size_for(tick_rate: int) -> int:
    """Frames per fetch chunk for a recording at tick_rate."""
    return max(1, tick_rate * CHUNK_SECONDS)


def max_cache_frames_for(tick_rate: int) -> int:
    """Cache budget in frames for a recording at tick_rate."""
    return max(1, tick_rate * MAX_CACHE_SECONDS)
