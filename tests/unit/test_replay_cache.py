# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any

from buffers.replay_cache import MergeOutcome, ReplayCache
from buffers.window import ViewContext, ViewMode
from conftest import FakeBackend, make_record
from telemetry.field_mask import FieldMask
from transport.backend import FrameRecord


def make_cache(
    backend: Any = None,
    *,
    total_frames: int = 10_000,
    tick_rate: int = 60,
    **kwargs: Any,
) -> ReplayCache:
    cache = ReplayCache(backend or FakeBackend(total_frames))
    cache.configure(total_frames=total_frames, tick_rate=tick_rate, **kwargs)
    return cache


def records(start: int, end: int, marker: str = "old") -> list[FrameRecord]:
    out = []
    for i in range(start, end):
        rec = make_record(i)
        rec["marker"] = marker
        out.append(FrameRecord(index=i, record=rec))
    return out


def marker_at(cache: ReplayCache, frame: int) -> str:
    entry = cache.get_entry(frame)
    assert entry is not None
    return entry.payload["marker"]


# ---------------------------------------------------------------------
# Configuration / cursor
# ---------------------------------------------------------------------

def test_configure_derives_chunk_and_budget_from_tick_rate():
    cache = make_cache(tick_rate=60)

    assert cache.chunk_size == 300
    assert cache.max_cache_frames == 7200


def test_cursor_is_clamped_to_recording():
    cache = make_cache(total_frames=100)

    cache.cursor = 500
    assert cache.cursor == 99
    cache.cursor = -3
    assert cache.cursor == 0


# ---------------------------------------------------------------------
# Merge rules
# ---------------------------------------------------------------------

def test_merge_into_empty_cache_adopts_range():
    cache = make_cache()

    assert cache.merge_frames(records(600, 900)) is MergeOutcome.ADOPTED
    assert cache.start_frame == 600
    assert cache.count == 300
    assert cache.dirty is True


def test_merge_overlapping_ranges_takes_union_and_fetched_wins():
    cache = make_cache()
    cache.merge_frames(records(0, 300, "old"))

    outcome = cache.merge_frames(records(200, 500, "new"))

    assert outcome is MergeOutcome.MERGED
    assert cache.start_frame == 0
    assert cache.count == 500
    assert marker_at(cache, 199) == "old"
    assert marker_at(cache, 200) == "new"
    assert marker_at(cache, 499) == "new"


def test_merge_range_before_existing_extends_start():
    cache = make_cache()
    cache.merge_frames(records(300, 600))

    assert cache.merge_frames(records(0, 300)) is MergeOutcome.MERGED
    assert (cache.start_frame, cache.end_frame) == (0, 600)
    assert all(cache.has(f) for f in range(0, 600))


def test_merge_disjoint_farther_range_is_discarded(events):
    cache = make_cache()
    cache.cursor = 150
    cache.merge_frames(records(0, 300))

    outcome = cache.merge_frames(records(3000, 3300))

    assert outcome is MergeOutcome.DISCARDED
    assert (cache.start_frame, cache.count) == (0, 300)
    assert "REPLAY_MERGE_DISCARDED" in [e["event_type"] for e in events]


def test_merge_disjoint_closer_range_replaces_cache():
    cache = make_cache()
    cache.merge_frames(records(0, 300))
    cache.cursor = 3100

    assert cache.merge_frames(records(3000, 3300)) is MergeOutcome.REPLACED
    assert (cache.start_frame, cache.count) == (3000, 300)
    assert not cache.has(0)


def test_merge_disjoint_equal_distance_keeps_existing():
    cache = make_cache()
    cache.merge_frames(records(0, 100))
    cache.cursor = 250  # centers at 50 and 450

    assert cache.merge_frames(records(400, 500)) is MergeOutcome.DISCARDED
    assert cache.start_frame == 0


def test_merge_empty_fetch_changes_nothing():
    cache = make_cache()
    assert cache.merge_frames([]) is MergeOutcome.EMPTY
    assert cache.count == 0
    assert cache.dirty is False


# ---------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------

def test_trim_keeps_cursor_and_respects_budget():
    for cursor in (0, 50, 200, 333, 399):
        cache = make_cache(chunk_size=100, max_cache_frames=250)
        cache.cursor = cursor

        cache.merge_frames(records(0, 400))

        assert cache.count <= 250, cursor
        assert cache.has(cursor), cursor


def test_trim_centers_cursor_when_possible():
    cache = make_cache(chunk_size=100, max_cache_frames=200)
    cache.cursor = 500
    cache.merge_frames(records(0, 1000))

    assert (cache.start_frame, cache.end_frame) == (400, 600)


def test_trim_noop_under_budget():
    cache = make_cache()
    cache.merge_frames(records(0, 300))
    assert cache.trim_cache() == 0
    assert cache.count == 300


# ---------------------------------------------------------------------
# Window entries
# ---------------------------------------------------------------------

def test_window_is_centered_on_cursor_with_gaps_for_uncached_frames():
    cache = make_cache()
    cache.merge_frames(records(0, 300))
    cache.cursor = 30

    view = cache.get_window_entries(10_000)  # half = 300 frames

    assert view.mode is ViewMode.REPLAY
    assert view.anchor_time_ms == 500.0
    assert len(view) == 331  # clipped at frame 0
    assert view.at(0).timestamp_ms == 0
    assert view.at(299) is not None
    assert view.at(300) is None


def test_window_is_clipped_at_recording_end():
    cache = make_cache(total_frames=10_000)
    cache.cursor = 9990

    view = cache.query(ViewContext(mode=ViewMode.REPLAY, window_ms=1000))

    # [9960, 9999]
    assert len(view) == 40
    assert view.loaded_count() == 0


def test_window_fills_in_after_merge():
    cache = make_cache()
    cache.cursor = 10
    view = cache.get_window_entries(1000)
    assert view.at(10) is None

    cache.merge_frames(records(0, 300))

    assert view.at(10).metric("speed") == 10 * 3.6


# ---------------------------------------------------------------------
# Loading, prefetch, cancellation
# ---------------------------------------------------------------------

def test_ensure_loaded_fetches_cursor_chunk_then_prefetches_around_it():
    async def scenario() -> tuple[FakeBackend, ReplayCache]:
        backend = FakeBackend(10_000)
        cache = make_cache(backend)
        cache.cursor = 3000  # chunk 10

        await cache.ensure_loaded()
        assert cache.has(3000)
        await cache.wait_idle()
        return backend, cache

    backend, cache = asyncio.run(scenario())

    # 30 s behind (1800 frames), chunk aligned; 60 s ahead (3600 frames) up to
    # the last chunk that fits inside the span trim keeps
    assert (cache.start_frame, cache.end_frame) == (1200, 6600)
    assert backend.requested_starts()[0] == 3000
    assert len(backend.calls) == len(set(backend.requested_starts()))


def test_ensure_loaded_is_idempotent_for_cached_chunks():
    async def scenario() -> FakeBackend:
        backend = FakeBackend(10_000)
        cache = make_cache(backend)
        cache.cursor = 3000
        await cache.ensure_loaded()
        await cache.wait_idle()
        first = len(backend.calls)

        await cache.ensure_loaded()
        await cache.wait_idle()
        assert len(backend.calls) == first
        return backend

    asyncio.run(scenario())


def test_full_cache_is_not_refetched_past_trim_budget():
    async def scenario() -> tuple[list[int], ReplayCache]:
        backend = FakeBackend(20_000)
        cache = make_cache(backend, total_frames=20_000)
        cache.cursor = 10_000
        cache.merge_frames(records(6000, 14_000))
        assert (cache.start_frame, cache.end_frame) == (6400, 13_600)

        calls_per_load = []
        for _ in range(5):
            before = len(backend.calls)
            await cache.ensure_loaded()
            await cache.wait_idle()
            calls_per_load.append(len(backend.calls) - before)
        return calls_per_load, cache

    calls_per_load, cache = asyncio.run(scenario())

    assert calls_per_load == [0, 0, 0, 0, 0]
    assert (cache.start_frame, cache.end_frame) == (6400, 13_600)


def test_prefetch_stays_inside_retained_span_while_playing():
    async def scenario() -> tuple[FakeBackend, ReplayCache]:
        backend = FakeBackend(20_000)
        cache = make_cache(backend, total_frames=20_000)
        for cursor in range(6000, 12_001, 300):
            cache.cursor = cursor
            await cache.ensure_loaded()
            await cache.wait_idle()
        return backend, cache

    backend, cache = asyncio.run(scenario())

    keep_start, keep_end = cache.retained_span()
    assert keep_start <= cache.start_frame and cache.end_frame <= keep_end
    assert len(backend.calls) == len(set(backend.requested_starts()))


def test_ensure_loaded_skips_prefetch_while_scrubbing():
    async def scenario() -> FakeBackend:
        backend = FakeBackend(10_000)
        cache = make_cache(backend)
        cache.scrubbing = True
        cache.cursor = 3000
        await cache.ensure_loaded()
        await cache.wait_idle()
        return backend

    backend = asyncio.run(scenario())
    assert backend.requested_starts() == [3000]


def test_concurrent_ensure_loaded_joins_in_flight_fetch():
    async def scenario() -> FakeBackend:
        backend = FakeBackend(10_000, gated=True)
        cache = make_cache(backend)
        cache.scrubbing = True
        cache.cursor = 600

        first = asyncio.create_task(cache.ensure_loaded())
        second = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)
        backend.release(600)
        await asyncio.gather(first, second)
        return backend

    backend = asyncio.run(scenario())
    assert backend.requested_starts() == [600]


def test_field_mask_is_forwarded_to_backend():
    async def scenario() -> FakeBackend:
        backend = FakeBackend(1000)
        cache = make_cache(backend, total_frames=1000)
        cache.scrubbing = True
        await cache.ensure_loaded(FieldMask.of(["vehicle"]))
        return backend

    backend = asyncio.run(scenario())
    assert backend.calls[0][2] == FieldMask.of(["vehicle"])


def test_late_response_for_abandoned_position_is_discarded(events):
    async def scenario() -> ReplayCache:
        backend = FakeBackend(20_000, gated=True)
        cache = make_cache(backend, total_frames=20_000)
        chunk = cache.chunk_size

        cache.cursor = 5 * chunk + 10
        slow = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)

        cache.cursor = 40 * chunk + 10
        fast = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)

        # Chunk 40 resolves first, chunk 5 afterwards
        backend.release(40 * chunk)
        await fast
        backend.release(5 * chunk)
        await slow

        assert cache.start_frame == 40 * chunk
        cache.reset()
        return cache

    asyncio.run(scenario())

    discarded = [e for e in events if e["event_type"] == "REPLAY_MERGE_DISCARDED"]
    assert len(discarded) == 1
    assert discarded[0]["start"] == 5 * 300


def test_late_response_leaves_cursor_chunk_cached():
    async def scenario() -> ReplayCache:
        backend = FakeBackend(20_000, gated=True)
        cache = make_cache(backend, total_frames=20_000)

        cache.cursor = 1510
        slow = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)
        cache.cursor = 12_010
        fast = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)

        backend.release(12_000)
        await fast
        backend.release(1500)
        await slow
        return cache

    cache = asyncio.run(scenario())

    assert cache.start_frame == 12_000
    assert not cache.has(1500)
    assert cache.get_entry(12_010).metric("rpm") == 1000.0 + 12_010


def test_debounced_load_cancels_previous_scope(events):
    async def scenario() -> tuple[FakeBackend, ReplayCache]:
        backend = FakeBackend(10_000, gated=True)
        cache = make_cache(backend)
        cache.scrubbing = True

        cache.cursor = 3000
        cache.ensure_loaded_debounced(5)
        await asyncio.sleep(0.03)
        assert backend.requested_starts() == [3000]

        cache.cursor = 6000
        cache.ensure_loaded_debounced(5)
        await asyncio.sleep(0.03)

        backend.release(6000)
        backend.release(3000)
        await cache.wait_idle()
        return backend, cache

    backend, cache = asyncio.run(scenario())

    assert backend.requested_starts() == [3000, 6000]
    assert cache.has(6000)
    assert not cache.has(3000)

    types = [e["event_type"] for e in events]
    assert "REPLAY_FETCH_SUPERSEDED" in types
    assert "REPLAY_FETCH_CANCELLED" in types
    assert "REPLAY_FETCH_FAILED" not in types


def test_debounce_coalesces_rapid_calls():
    async def scenario() -> FakeBackend:
        backend = FakeBackend(10_000)
        cache = make_cache(backend)
        cache.scrubbing = True

        for frame in (100, 900, 1700, 2500, 3300):
            cache.cursor = frame
            cache.ensure_loaded_debounced(20)
            await asyncio.sleep(0)

        await cache.wait_idle()
        return backend

    backend = asyncio.run(scenario())
    assert backend.requested_starts() == [3300]


def test_reset_clears_data_and_cancels_fetches(events):
    async def scenario() -> ReplayCache:
        backend = FakeBackend(10_000, gated=True)
        cache = make_cache(backend)
        cache.cursor = 3000
        task = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)
        assert cache.in_flight_chunks() == frozenset({10})

        cache.reset()
        await task
        return cache

    cache = asyncio.run(scenario())

    assert cache.count == 0
    assert cache.total_frames == 0
    assert cache.cursor == 0
    assert cache.in_flight_chunks() == frozenset()
    types = [e["event_type"] for e in events]
    assert "REPLAY_CACHE_RESET" in types
    assert "REPLAY_FETCH_CANCELLED" in types


def test_fetch_cancelled_outside_its_scope_stays_cancelled(events):
    async def scenario() -> tuple[bool, ReplayCache]:
        backend = FakeBackend(10_000, gated=True)
        cache = make_cache(backend)
        cache.cursor = 3000
        loader = asyncio.create_task(cache.ensure_loaded())
        await asyncio.sleep(0.01)

        fetch, _ = cache._in_flight[10]  # pylint: disable=protected-access
        fetch.cancel()
        await loader
        return fetch.cancelled(), cache

    cancelled, cache = asyncio.run(scenario())

    assert cancelled
    assert not cache.has(3000)
    dropped = [e for e in events if e["event_type"] == "REPLAY_FETCH_CANCELLED"]
    assert dropped[0]["scope_cancelled"] is False
