# pylint: disable=missing-module-docstring,missing-function-docstring
from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from observability import logger
from telemetry.field_mask import FieldMask
from transport.backend import ControlAction, FrameRecord, parse_frames
from transport.errors import FrameFetchError


def make_record(i: int) -> dict[str, Any]:
    return {
        "vehicle": {"speed": float(i), "rpm": 1000.0 + i, "throttle": 0.5},
        "motion": {"g_force": {"x": 0.1, "y": 1.0, "z": -0.2}},
    }


class FakeBackend:
    """
    In-process FrameBackend.

    gated=True holds every get_frames() call until release(start) is
    called, which lets tests decide completion order.
    """

    def __init__(self, total_frames: int = 10_000, *, gated: bool = False) -> None:
        self.total_frames = total_frames
        self.gated = gated
        self.calls: list[tuple[int, int, FieldMask | None]] = []
        self.controls: list[tuple[ControlAction, float | None]] = []
        self.fail_starts: set[int] = set()
        self.malformed_starts: set[int] = set()
        self.control_error: Exception | None = None
        self.close_error: Exception | None = None
        self.closed = 0
        self._gates: dict[int, asyncio.Event] = {}

    def _gate(self, start: int) -> asyncio.Event:
        if start not in self._gates:
            self._gates[start] = asyncio.Event()
        return self._gates[start]

    def release(self, start: int) -> None:
        self._gate(start).set()

    def requested_starts(self) -> list[int]:
        return [start for start, _, _ in self.calls]

    async def get_frames(
        self,
        *,
        start: int,
        count: int,
        fields: FieldMask | None = None,
    ) -> list[FrameRecord]:
        self.calls.append((start, count, fields))
        if self.gated:
            await self._gate(start).wait()
        else:
            await asyncio.sleep(0)

        if start in self.fail_starts:
            raise FrameFetchError(f"GET frames start={start} -> 503")
        if start in self.malformed_starts:
            # Off-by-one index: not contiguous from start
            return parse_frames([{"i": start + 1, "f": {}}], start=start, count=count)

        end = min(start + count, self.total_frames)
        return [FrameRecord(index=i, record=make_record(i)) for i in range(start, end)]

    async def post_control(self, action: ControlAction, value: float | None = None) -> None:
        self.controls.append((action, value))
        if self.control_error is not None:
            raise self.control_error

    async def close_replay(self) -> None:
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every logged event (DEBUG included), decoded."""
    captured: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: captured.append(json.loads(line)))
    monkeypatch.setattr(logger, "_json_lines", True)
    monkeypatch.setattr(logger, "_min_level", 10)
    return captured


def event_types(events: list[dict[str, Any]]) -> list[str]:
    return [e["event_type"] for e in events]
