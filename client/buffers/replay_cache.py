"""
Demand-paged, chunked cache of recorded telemetry.

Responsibilities:
- Fetch fixed-size chunks of frames around a movable cursor
- Merge fetched ranges into ONE contiguous backing list
- Discard stale out-of-order responses (closer-to-cursor wins)
- Bound memory by trimming around the cursor
- Scope and cancel fetches per scrub episode

Non-responsibilities:
- Advancing the cursor (playback clock owns that)
- Interpreting field masks (forwarded to the backend verbatim)
- Retry schedules (the next ensure_loaded call is the retry)

Invariants:
- entries[k] is the sample for frame start_frame + k, no holes
- 0 <= cursor < total_frames whenever total_frames > 0
- trim_cache() never drops the cursor frame
- All mutation is synchronous; suspension happens only inside fetches
"""

from __future__ import annotations

import asyncio
from asyncio import Task
from enum import Enum
from typing import Any, Sequence

from buffers.cancellation import CancellationScope, ScopeManager
from buffers.window import ViewContext, ViewMode, WindowView
from constants import (
    PREFETCH_AHEAD_S,
    PREFETCH_BEHIND_S,
    SCRUB_DEBOUNCE_MS,
    TICK_RATE_DEFAULT,
    chunk_size_for,
    frame_time_ms,
    max_cache_frames_for,
    ms_to_frames,
)
from observability.logger import log_event
from observability.metrics import timed
from telemetry.field_mask import FieldMask
from telemetry.metrics_table import DEFAULT_METRICS, MetricTable
from telemetry.sample import Sample
from transport.backend import FrameBackend, FrameRecord
from transport.errors import MalformedResponseError, ReplayError


class MergeOutcome(str, Enum):
    """What merge_frames() did with a fetched range."""

    EMPTY = "empty"          # nothing fetched, nothing changed
    ADOPTED = "adopted"      # cache was empty, took the range as-is
    MERGED = "merged"        # overlapping/adjacent, union kept
    REPLACED = "replaced"    # disjoint and closer to cursor, old cache dropped
    DISCARDED = "discarded"  # disjoint and farther from cursor, stale


class ReplayCache:
    """
    Contiguous frame cache for one replay session.

    Frame index space is distinct from time:
        time_ms(frame) = frame / tick_rate * 1000
    """

    def __init__(
        self,
        backend: FrameBackend,
        *,
        metrics: MetricTable = DEFAULT_METRICS,
        replay_id: str | None = None,
    ) -> None:
        self._backend = backend
        self._metrics = metrics
        self._replay_id = replay_id

        self._entries: list[Sample] = []
        self.start_frame: int = 0

        self.total_frames: int = 0
        self.tick_rate: int = TICK_RATE_DEFAULT
        self.chunk_size: int = chunk_size_for(TICK_RATE_DEFAULT)
        self.max_cache_frames: int = max_cache_frames_for(TICK_RATE_DEFAULT)
        self.prefetch_behind_s: float = PREFETCH_BEHIND_S
        self.prefetch_ahead_s: float = PREFETCH_AHEAD_S

        self._cursor: int = 0

        # Set by the playback runtime while a seek control is being dragged
        self.scrubbing: bool = False

        # Set on every successful merge; cleared by the consumer after redraw
        self.dirty: bool = False

        self._scopes = ScopeManager()
        self._in_flight: dict[int, tuple[Task[None], CancellationScope]] = {}
        self._prefetchers: dict[int, tuple[Task[None], CancellationScope]] = {}
        self._debounce_task: Task[None] | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(
        self,
        *,
        total_frames: int,
        tick_rate: int,
        chunk_size: int | None = None,
        max_cache_frames: int | None = None,
        prefetch_behind_s: float = PREFETCH_BEHIND_S,
        prefetch_ahead_s: float = PREFETCH_AHEAD_S,
    ) -> None:
        """Size the cache for a recording. Does not touch cached data."""
        if total_frames < 0:
            raise ValueError("total_frames must be >= 0")
        if tick_rate <= 0:
            raise ValueError("tick_rate must be > 0")

        self.total_frames = total_frames
        self.tick_rate = tick_rate
        self.chunk_size = chunk_size if chunk_size is not None else chunk_size_for(tick_rate)
        self.max_cache_frames = (
            max_cache_frames if max_cache_frames is not None else max_cache_frames_for(tick_rate)
        )
        if self.chunk_size <= 0 or self.max_cache_frames <= 0:
            raise ValueError("chunk_size and max_cache_frames must be > 0")
        self.prefetch_behind_s = prefetch_behind_s
        self.prefetch_ahead_s = prefetch_ahead_s
        self.cursor = self._cursor

    # ------------------------------------------------------------------
    # Cursor / lookup
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> int:
        return self._cursor

    @cursor.setter
    def cursor(self, frame: int) -> None:
        last = max(self.total_frames - 1, 0)
        self._cursor = min(max(int(frame), 0), last)

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def end_frame(self) -> int:
        """One past the last cached frame."""
        return self.start_frame + len(self._entries)

    def time_ms(self, frame: int) -> float:
        return frame_time_ms(frame, self.tick_rate)

    def has(self, frame: int) -> bool:
        return self.start_frame <= frame < self.end_frame

    def get_entry(self, frame: int) -> Sample | None:
        """Sample for an absolute frame index, or None if not cached."""
        if not self.has(frame):
            return None
        return self._entries[frame - self.start_frame]

    def current_sample(self) -> Sample | None:
        return self.get_entry(self._cursor)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def chunk_index(self, frame: int) -> int:
        return frame // self.chunk_size

    def chunk_bounds(self, chunk: int) -> tuple[int, int]:
        """[start, end) frame span of a chunk, clipped to the recording."""
        start = chunk * self.chunk_size
        return start, min(start + self.chunk_size, self.total_frames)

    def has_chunk(self, chunk: int) -> bool:
        start, end = self.chunk_bounds(chunk)
        return start >= self.start_frame and end <= self.end_frame

    def needs_fetch(self) -> bool:
        """True iff the chunk holding the cursor is not fully cached."""
        return not self.has_chunk(self.chunk_index(self._cursor))

    def in_flight_chunks(self) -> frozenset[int]:
        return frozenset(self._in_flight)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def ensure_loaded(self, fields: FieldMask | None = None) -> None:
        """
        Make sure the cursor chunk is cached, then prefetch around it.

        Awaits the cursor chunk (a fetch already in flight is joined, not
        duplicated). Prefetch of PREFETCH_BEHIND_S / PREFETCH_AHEAD_S of
        tick-time runs in the background and is skipped while scrubbing.
        """
        if self.total_frames <= 0:
            return

        scope = self._scopes.current
        cursor_chunk = self.chunk_index(self._cursor)
        task = self._request_chunk(cursor_chunk, fields, scope)
        if task is not None:
            await asyncio.wait({task})

        if scope.cancelled or self.scrubbing:
            return
        self._start_prefetch(fields, scope)

    def ensure_loaded_debounced(
        self,
        delay_ms: int = SCRUB_DEBOUNCE_MS,
        fields: FieldMask | None = None,
    ) -> Task[None]:
        """
        Coalesce rapid calls into one deferred ensure_loaded().

        Every call supersedes the cancellation scope, so fetches (and the
        pending timer) issued by the previous call are cancelled.
        """
        scope, cancelled = self._scopes.supersede()
        if cancelled:
            log_event({
                "event_type": "REPLAY_FETCH_SUPERSEDED",
                "level": "DEBUG",
                "replay_id": self._replay_id,
                "cancelled_tasks": cancelled,
                "scope_id": scope.scope_id,
            })

        self._debounce_task = self._scopes.spawn(
            self._debounced_load(delay_ms, fields), scope
        )
        return self._debounce_task

    async def _debounced_load(self, delay_ms: int, fields: FieldMask | None) -> None:
        await asyncio.sleep(delay_ms / 1000.0)
        await self.ensure_loaded(fields)

    def _request_chunk(
        self,
        chunk: int,
        fields: FieldMask | None,
        scope: CancellationScope,
    ) -> Task[None] | None:
        """
        Return the task that will deliver `chunk`.

        None means nothing to wait for (already cached or outside the
        recording). An in-flight fetch from a live scope is reused.
        """
        if self.has_chunk(chunk):
            return None
        start, end = self.chunk_bounds(chunk)
        if chunk < 0 or start >= end:
            return None

        existing = self._in_flight.get(chunk)
        if existing is not None:
            task, owner = existing
            if not task.done() and not owner.cancelled:
                return task

        task = self._scopes.spawn(
            self._fetch_chunk(chunk, start, end - start, fields, scope), scope
        )
        self._in_flight[chunk] = (task, scope)

        def _cleanup(done: Task[None]) -> None:
            current = self._in_flight.get(chunk)
            if current is not None and current[0] is done:
                del self._in_flight[chunk]

        task.add_done_callback(_cleanup)
        return task

    async def _fetch_chunk(
        self,
        chunk: int,
        start: int,
        count: int,
        fields: FieldMask | None,
        scope: CancellationScope,
    ) -> None:
        details = {"chunk": chunk, "start": start, "count": count}
        try:
            with timed("replay_chunk_fetch", replay_id=self._replay_id, details=details):
                records = await self._backend.get_frames(
                    start=start, count=count, fields=fields
                )

        except asyncio.CancelledError:
            # Expected while scrubbing; not an error
            log_event({
                "event_type": "REPLAY_FETCH_CANCELLED",
                "level": "DEBUG",
                "replay_id": self._replay_id,
                "scope_cancelled": scope.cancelled,
                **details,
            })
            if not scope.cancelled:
                # Cancelled from outside the scope (shutdown, loop teardown)
                raise
            return

        except MalformedResponseError as exc:
            log_event({
                "event_type": "REPLAY_FETCH_MALFORMED",
                "level": "WARNING",
                "replay_id": self._replay_id,
                "message": str(exc),
                **details,
            })
            return

        except ReplayError as exc:
            log_event({
                "event_type": "REPLAY_FETCH_FAILED",
                "level": "WARNING",
                "replay_id": self._replay_id,
                "exception": type(exc).__name__,
                "message": str(exc),
                **details,
            })
            return

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "REPLAY_FETCH_FAILED",
                "level": "ERROR",
                "replay_id": self._replay_id,
                "exception": type(exc).__name__,
                "message": str(exc),
                **details,
            })
            return

        if scope.cancelled:
            log_event({
                "event_type": "REPLAY_FETCH_DROPPED",
                "level": "DEBUG",
                "replay_id": self._replay_id,
                "scope_id": scope.scope_id,
                **details,
            })
            return

        self.merge_frames(records)

    # ------------------------------------------------------------------
    # Prefetch
    # ------------------------------------------------------------------

    def _start_prefetch(self, fields: FieldMask | None, scope: CancellationScope) -> None:
        """
        Run one background walker per direction (ahead = +1, behind = -1).

        Each walker fetches the nearest missing chunk, waits for it, then
        moves outward, so every response lands adjacent to the cache.
        """
        for direction in (1, -1):
            running = self._prefetchers.get(direction)
            if running is not None and not running[0].done() and not running[1].cancelled:
                continue
            task = self._scopes.spawn(self._prefetch_walk(direction, fields, scope), scope)
            self._prefetchers[direction] = (task, scope)

    async def _prefetch_walk(
        self,
        direction: int,
        fields: FieldMask | None,
        scope: CancellationScope,
    ) -> None:
        while not scope.cancelled and not self.scrubbing:
            if self.needs_fetch():
                # Cursor jumped off the cache; ensure_loaded owns that case
                return
            chunk = self._next_prefetch_chunk(direction)
            if chunk is None:
                return
            task = self._request_chunk(chunk, fields, scope)
            if task is None:
                return
            await asyncio.wait({task})
            if not self.has_chunk(chunk):
                # Failed or discarded; next ensure_loaded retries
                return

    def _next_prefetch_chunk(self, direction: int) -> int | None:
        """
        Nearest missing chunk in `direction`, or None.

        Chunks that would not survive trim_cache() are never targets,
        otherwise they would be fetched, trimmed and fetched again.
        """
        cursor_chunk = self.chunk_index(self._cursor)
        keep_start, keep_end = self.retained_span()
        if direction > 0:
            ahead = int(self.prefetch_ahead_s * self.tick_rate)
            last = self.chunk_index(min(self.total_frames - 1, self._cursor + ahead))
            candidates: Sequence[int] = range(cursor_chunk + 1, last + 1)
        else:
            behind = int(self.prefetch_behind_s * self.tick_rate)
            first = self.chunk_index(max(0, self._cursor - behind))
            candidates = range(cursor_chunk - 1, first - 1, -1)

        for chunk in candidates:
            start, end = self.chunk_bounds(chunk)
            if start < keep_start or end > keep_end:
                return None
            if not self.has_chunk(chunk):
                return chunk
        return None

    def retained_span(self) -> tuple[int, int]:
        """
        [start, end) frame span that trim_cache() never drops.

        Cached frames inside this span survive every trim for the current
        cursor.
        """
        start = self._cursor - self.max_cache_frames // 2
        return start, start + self.max_cache_frames

    # ------------------------------------------------------------------
    # Merge / eviction
    # ------------------------------------------------------------------

    def merge_frames(self, records: Sequence[FrameRecord]) -> MergeOutcome:
        """
        Merge a contiguous fetched range into the cache.

        1. Empty cache: adopt the range.
        2. Overlapping or adjacent: union, fetched samples win the overlap.
        3. Disjoint: keep whichever range's center is closer to the cursor;
           ties keep the existing cache (the fetch is a stale response).
        4. trim_cache().
        """
        if not records:
            return MergeOutcome.EMPTY

        new_start = records[0].index
        processed = [
            self._metrics.build_sample(r.record, int(self.time_ms(r.index)))
            for r in records
        ]
        new_end = new_start + len(processed)

        if not self._entries:
            self.start_frame = new_start
            self._entries = processed
            outcome = MergeOutcome.ADOPTED

        elif new_start <= self.end_frame and new_end >= self.start_frame:
            merged_start = min(self.start_frame, new_start)
            merged_end = max(self.end_frame, new_end)
            merged: list[Sample | None] = [None] * (merged_end - merged_start)

            offset = self.start_frame - merged_start
            merged[offset:offset + len(self._entries)] = self._entries
            offset = new_start - merged_start
            merged[offset:offset + len(processed)] = processed

            self.start_frame = merged_start
            self._entries = merged  # type: ignore[assignment]  # union has no holes
            outcome = MergeOutcome.MERGED

        else:
            dist_old = abs(self._cursor - (self.start_frame + len(self._entries) / 2))
            dist_new = abs(self._cursor - (new_start + len(processed) / 2))
            if dist_new < dist_old:
                self.start_frame = new_start
                self._entries = processed
                outcome = MergeOutcome.REPLACED
            else:
                log_event({
                    "event_type": "REPLAY_MERGE_DISCARDED",
                    "level": "DEBUG",
                    "replay_id": self._replay_id,
                    "start": new_start,
                    "count": len(processed),
                    "cursor": self._cursor,
                })
                return MergeOutcome.DISCARDED

        self.trim_cache()
        self.dirty = True
        return outcome

    def trim_cache(self) -> int:
        """
        Enforce max_cache_frames around the cursor.

        Trims from the end farther from the cursor, stopping once the
        cursor would sit at the center of the kept span, then truncates the
        other end if still over budget. Equivalent to keeping the
        max_cache_frames-long span centered on the cursor, clamped to the
        cached range. Returns the number of frames dropped.
        """
        excess = len(self._entries) - self.max_cache_frames
        if excess <= 0:
            return 0

        cursor_local = self._cursor - self.start_frame
        lo = min(max(cursor_local - self.max_cache_frames // 2, 0), excess)

        self._entries = self._entries[lo:lo + self.max_cache_frames]
        self.start_frame += lo
        return excess

    # ------------------------------------------------------------------
    # Window query
    # ------------------------------------------------------------------

    def get_window_entries(self, window_ms: float) -> WindowView:
        """
        Cursor-centered window, clipped to [0, total_frames).

        Frames not cached yet come back as None from the accessor; they
        fill in as fetches land.
        """
        anchor = self.time_ms(self._cursor)
        if self.total_frames <= 0:
            return WindowView.empty(ViewMode.REPLAY, anchor)

        half = ms_to_frames(window_ms / 2, self.tick_rate)
        first = max(0, self._cursor - half)
        last = min(self.total_frames - 1, self._cursor + half)

        def _accessor(i: int) -> Sample | None:
            return self.get_entry(first + i)

        return WindowView(
            mode=ViewMode.REPLAY,
            count=last - first + 1,
            anchor_time_ms=anchor,
            accessor=_accessor,
        )

    def query(self, ctx: ViewContext) -> WindowView:
        return self.get_window_entries(ctx.window_ms)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """
        Drop all data, cancel every fetch, zero cursor and flags.

        Called on entering and on leaving replay mode.
        """
        _, cancelled = self._scopes.supersede()
        self._in_flight.clear()
        self._prefetchers.clear()
        self._debounce_task = None

        self._entries = []
        self.start_frame = 0
        self.total_frames = 0
        self._cursor = 0
        self.scrubbing = False
        self.dirty = False

        log_event({
            "event_type": "REPLAY_CACHE_RESET",
            "replay_id": self._replay_id,
            "cancelled_tasks": cancelled,
        })

    async def wait_idle(self) -> None:
        """Wait until no fetch, prefetch walker or debounce timer is pending."""
        while True:
            pending = [t for t in self._tracked_tasks() if not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    def _tracked_tasks(self) -> list[Task[Any]]:
        tasks: list[Task[Any]] = [t for t, _ in self._in_flight.values()]
        tasks.extend(t for t, _ in self._prefetchers.values())
        if self._debounce_task is not None:
            tasks.append(self._debounce_task)
        return tasks

    def snapshot(self) -> dict[str, Any]:
        """Lightweight snapshot for logging."""
        return {
            "start_frame": self.start_frame,
            "count": len(self._entries),
            "cursor": self._cursor,
            "total_frames": self.total_frames,
            "in_flight": sorted(self._in_flight),
            "scrubbing": self.scrubbing,
        }
