"""
Narrow contract the replay core needs from the frame-serving backend.

This module contains:
- Value types exchanged with the backend
- A Protocol (capabilities, not an implementation)
- Response validation shared by every implementation

Zero buffering logic, zero playback decisions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from telemetry.field_mask import FieldMask
from transport.errors import MalformedResponseError


class ControlAction(str, Enum):
    """Playback-state changes mirrored to the server session."""

    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    SPEED = "speed"


@dataclass(frozen=True)
class FrameRecord:
    """One `{i, f}` entry of a frames response."""
    index: int
    record: Mapping[str, Any]


@dataclass(frozen=True)
class ReplayInfo:
    """
    Replay session metadata, supplied once at session start.

    current_frame / playing / playback_speed restore the server-side
    position when re-entering an existing replay.
    """
    total_frames: int
    tick_rate: int
    duration_secs: float = 0.0
    current_frame: int = 0
    playing: bool = True
    playback_speed: float = 1.0
    track_name: str = ""
    car_name: str = ""

    @staticmethod
    def from_json(data: Mapping[str, Any]) -> ReplayInfo:
        try:
            total = int(data["total_frames"])
            tick_rate = int(data["tick_rate"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"bad replay info: {exc}") from exc
        if total < 0 or tick_rate <= 0:
            raise MalformedResponseError(
                f"bad replay info: total_frames={total} tick_rate={tick_rate}"
            )
        return ReplayInfo(
            total_frames=total,
            tick_rate=tick_rate,
            duration_secs=float(data.get("duration_secs") or 0.0),
            current_frame=int(data.get("current_frame") or 0),
            playing=data.get("playing") is not False,
            playback_speed=float(data.get("playback_speed") or 1.0),
            track_name=str(data.get("track_name") or ""),
            car_name=str(data.get("car_name") or ""),
        )


@runtime_checkable
class FrameBackend(Protocol):
    """
    Paged frames API + playback control.

    Contract:
    - get_frames() is idempotent and side-effect free
    - get_frames() raises FrameFetchError / MalformedResponseError;
      cancellation propagates as asyncio.CancelledError
    - post_control() is fire-and-forget from the core's perspective
    - close_replay() ends the server-side replay; callers do not await it
      on the switch back to live
    """

    async def get_frames(
        self,
        *,
        start: int,
        count: int,
        fields: FieldMask | None = None,
    ) -> list[FrameRecord]: ...

    async def post_control(
        self,
        action: ControlAction,
        value: float | None = None,
    ) -> None: ...

    async def close_replay(self) -> None: ...


def parse_frames(body: Any, *, start: int, count: int) -> list[FrameRecord]:
    """
    Validate a frames response body.

    Accepts fewer entries than requested (server-side clamping) but
    requires ascending, gap-free indices beginning at `start`.

    Raises:
        MalformedResponseError on any structural problem.
    """
    if not isinstance(body, Sequence) or isinstance(body, (str, bytes)):
        raise MalformedResponseError(f"expected a list, got {type(body).__name__}")
    if len(body) > count:
        raise MalformedResponseError(f"asked for {count} frames, got {len(body)}")

    records: list[FrameRecord] = []
    for offset, item in enumerate(body):
        if not isinstance(item, Mapping):
            raise MalformedResponseError(f"entry {offset} is not an object")
        index = item.get("i")
        record = item.get("f")
        if isinstance(index, bool) or not isinstance(index, int):
            raise MalformedResponseError(f"entry {offset} has no integer 'i'")
        if not isinstance(record, Mapping):
            raise MalformedResponseError(f"entry {offset} has no object 'f'")
        if index != start + offset:
            raise MalformedResponseError(
                f"entry {offset} has i={index}, expected {start + offset}"
            )
        records.append(FrameRecord(index=index, record=record))
    return records
