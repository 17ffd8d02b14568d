"""
Playback command messages.

Rules:
- Commands are inputs: requests from a control surface or the render
  clock to change playback state.
- Commands carry data only (no behavior).
- All state changes go through playback.clock.reduce().
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical playback command types.

    Stable discriminants used for logging and dispatch.
    """

    PLAY = "PLAY"
    PAUSE = "PAUSE"
    TOGGLE_PLAY = "TOGGLE_PLAY"
    SEEK = "SEEK"
    SET_SPEED = "SET_SPEED"

    SCRUB_START = "SCRUB_START"
    SCRUB_MOVE = "SCRUB_MOVE"
    SCRUB_END = "SCRUB_END"

    SET_LOOP = "SET_LOOP"
    CLEAR_LOOP = "CLEAR_LOOP"

    TICK = "TICK"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport controls
# =============================================================================

@dataclass(frozen=True)
class Play(Command):
    """Start or resume playback."""
    command_type: CommandType = CommandType.PLAY


@dataclass(frozen=True)
class Pause(Command):
    """Pause playback, keeping the cursor."""
    command_type: CommandType = CommandType.PAUSE


@dataclass(frozen=True)
class TogglePlay(Command):
    """Flip between playing and paused."""
    command_type: CommandType = CommandType.TOGGLE_PLAY


@dataclass(frozen=True)
class Seek(Command):
    """Jump the cursor to a frame (committed, non-drag seek)."""
    frame: int
    command_type: CommandType = CommandType.SEEK


@dataclass(frozen=True)
class SetSpeed(Command):
    """Change the playback speed multiplier."""
    speed: float
    command_type: CommandType = CommandType.SET_SPEED


# =============================================================================
# Scrubbing (seek control drag)
# =============================================================================

@dataclass(frozen=True)
class ScrubStart(Command):
    """Drag started: suspend playback, remember whether it was playing."""
    command_type: CommandType = CommandType.SCRUB_START


@dataclass(frozen=True)
class ScrubMove(Command):
    """Provisional cursor position while dragging."""
    frame: int
    command_type: CommandType = CommandType.SCRUB_MOVE


@dataclass(frozen=True)
class ScrubEnd(Command):
    """Drag released at `frame`; restore the pre-drag play state."""
    frame: int
    command_type: CommandType = CommandType.SCRUB_END


# =============================================================================
# Loop region
# =============================================================================

@dataclass(frozen=True)
class SetLoop(Command):
    """
    Install a loop region.

    start/end may arrive in either order; they are normalized when the
    region is built.
    """
    start: int
    end: int
    enabled: bool = True
    command_type: CommandType = CommandType.SET_LOOP


@dataclass(frozen=True)
class ClearLoop(Command):
    """Remove the loop region."""
    command_type: CommandType = CommandType.CLEAR_LOOP


# =============================================================================
# Clock
# =============================================================================

@dataclass(frozen=True)
class Tick(Command):
    """Render-clock tick carrying a monotonic wall-clock reading in ms."""
    now_ms: float
    command_type: CommandType = CommandType.TICK
