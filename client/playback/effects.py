"""
Side-effect requests emitted by the playback reducer.

Rules:
- Effects are declarative requests; PlaybackRuntime executes them.
- No behavior, no async, no I/O, no clocks.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from transport.backend import ControlAction


class LoadTrigger(str, Enum):
    """
    Why the reducer wants the cursor region loaded.

    The runtime maps SCRUB / COMMIT to the configured debounce delays.
    """

    IMMEDIATE = "IMMEDIATE"  # load now, no coalescing
    SCRUB = "SCRUB"          # provisional drag position
    COMMIT = "COMMIT"        # final position after a seek or drag release


class Effect:
    """Base effect type."""


@dataclass(frozen=True)
class SendControl(Effect):
    """
    Mirror a playback change to the server session.

    Fire-and-forget: failures are logged by the runtime, never retried.
    """
    action: ControlAction
    value: float | None = None


@dataclass(frozen=True)
class RequestLoad(Effect):
    """
    Ask the cache to cover the cursor.

    Non-IMMEDIATE triggers join the current coalescing group and
    supersede its fetches.
    """
    trigger: LoadTrigger = LoadTrigger.IMMEDIATE


@dataclass(frozen=True)
class LogEvent(Effect):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
