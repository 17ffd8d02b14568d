"""
Window query contract shared by the live ring and the replay cache.

Consumers ask for "the ordered samples covering time span X" and get a
WindowView back. Live windows trail "now"; replay windows are centered on
the cursor and may contain gaps (None) that fill in asynchronously.

Rules:
- Views are read-only and valid for the current render tick only
- None from at(i) means "not available yet", never an error
- No module-level state: everything a query needs arrives in ViewContext
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterator, Protocol, runtime_checkable

import numpy as np

from buffers.live_ring import LiveRingBuffer
from constants import LIVE_STALL_LEAD_MS, LIVE_STALL_THRESHOLD_MS, WINDOW_MS_DEFAULT
from telemetry.sample import Sample


class ViewMode(str, Enum):
    """
    Which source feeds the renderers.

    LIVE:
        Trailing window over the live ring buffer.

    REPLAY:
        Cursor-centered window over the replay cache.
    """

    LIVE = "LIVE"
    REPLAY = "REPLAY"


@dataclass(frozen=True)
class ViewContext:
    """
    Explicit per-tick context passed to every window query and render call.

    crosshair_ms is the shared hover timestamp across graphs (None when no
    graph is hovered).
    """

    mode: ViewMode = ViewMode.LIVE
    now_ms: float = 0.0
    window_ms: int = WINDOW_MS_DEFAULT
    crosshair_ms: float | None = None

    def at_time(self, now_ms: float) -> ViewContext:
        return replace(self, now_ms=now_ms)

    def with_crosshair(self, crosshair_ms: float | None) -> ViewContext:
        return replace(self, crosshair_ms=crosshair_ms)


Accessor = Callable[[int], "Sample | None"]


def _empty_accessor(_: int) -> Sample | None:
    return None


@dataclass(frozen=True)
class WindowView:
    """
    Bounded, ordered window of samples.

    anchor_time_ms is the trailing edge for LIVE and the cursor time for
    REPLAY.
    """

    mode: ViewMode
    count: int
    anchor_time_ms: float
    accessor: Accessor = _empty_accessor

    @staticmethod
    def empty(mode: ViewMode, anchor_time_ms: float = 0.0) -> WindowView:
        return WindowView(mode=mode, count=0, anchor_time_ms=anchor_time_ms)

    def at(self, i: int) -> Sample | None:
        """Sample at window position i, or None if out of range / loading."""
        if not 0 <= i < self.count:
            return None
        return self.accessor(i)

    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[Sample | None]:
        for i in range(self.count):
            yield self.accessor(i)

    def loaded_count(self) -> int:
        return sum(1 for s in self if s is not None)

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------

    def timestamps(self) -> np.ndarray:
        """Sample timestamps as float64, NaN where not loaded."""
        out = np.full(self.count, np.nan, dtype=np.float64)
        for i, sample in enumerate(self):
            if sample is not None:
                out[i] = sample.timestamp_ms
        return out

    def series(self, metric: str) -> np.ndarray:
        """One metric across the window as float64, NaN where missing."""
        out = np.full(self.count, np.nan, dtype=np.float64)
        for i, sample in enumerate(self):
            if sample is None:
                continue
            value = sample.metric(metric)
            if value is not None:
                out[i] = value
        return out

    def nearest_index(self, t_ms: float) -> int | None:
        """
        Window position of the loaded sample closest to t_ms.

        Used for the cross-graph crosshair. Ties resolve to the earlier
        sample. Returns None when nothing is loaded.
        """
        ts = self.timestamps()
        if ts.size == 0 or np.all(np.isnan(ts)):
            return None
        return int(np.nanargmin(np.abs(ts - t_ms)))


@runtime_checkable
class WindowQuery(Protocol):
    """Anything that can produce a WindowView for a render tick."""

    def query(self, ctx: ViewContext) -> WindowView: ...


class LiveWindowQuery:
    """
    Trailing-window query over a LiveRingBuffer.

    If the stream has stalled (newest sample older than the stall
    threshold), the trailing edge is pinned just after the newest sample
    so the last data stays on screen.
    """

    def __init__(self, ring: LiveRingBuffer) -> None:
        self._ring = ring

    def effective_now(self, now_ms: float) -> float:
        latest = self._ring.latest_timestamp()
        if latest is not None and now_ms - latest > LIVE_STALL_THRESHOLD_MS:
            return latest + LIVE_STALL_LEAD_MS
        return now_ms

    def window(self, window_ms: float, now_ms: float) -> WindowView:
        anchor = self.effective_now(now_ms)
        start, count = self._ring.window_range(window_ms, anchor)
        if count == 0:
            return WindowView.empty(ViewMode.LIVE, anchor)

        ring = self._ring

        def _accessor(i: int) -> Sample | None:
            return ring.at(start + i)

        return WindowView(
            mode=ViewMode.LIVE,
            count=count,
            anchor_time_ms=anchor,
            accessor=_accessor,
        )

    def query(self, ctx: ViewContext) -> WindowView:
        return self.window(ctx.window_ms, ctx.now_ms)
