"""
Viewer session container.

- Owns the live ring buffer and the replay playback runtime
- Switches the render source between LIVE and REPLAY
- NOT a state machine: playback decisions live in playback.clock
"""

from __future__ import annotations

import asyncio
import time
from asyncio import Task
from typing import Any

from buffers.live_ring import LiveRingBuffer
from buffers.replay_cache import ReplayCache
from buffers.window import LiveWindowQuery, ViewContext, ViewMode, WindowView
from config import AppConfig
from constants import (
    LIVE_BUFFER_CAPACITY_DEFAULT,
    LIVE_TICK_RATE_DEFAULT,
    PLAYBACK_SPEED_MAX,
    PLAYBACK_SPEED_MIN,
    SCRUB_DEBOUNCE_MS,
    SEEK_COMMIT_DEBOUNCE_MS,
    WINDOW_MS_DEFAULT,
)
from observability.logger import log_event
from playback.enums.mode import PlaybackMode
from playback.runtime import PlaybackRuntime
from playback.state import PlaybackState
from session.throughput import ThroughputMeter
from telemetry.metrics_table import DEFAULT_METRICS, MetricTable
from telemetry.sample import Payload, Sample
from transport.backend import FrameBackend, ReplayInfo
from transport.errors import ReplayError


def _now_ms() -> float:
    return time.monotonic_ns() / 1_000_000


class ViewerSession:
    """Mutable container for one dashboard viewer."""

    def __init__(
        self,
        backend: FrameBackend,
        *,
        metrics: MetricTable = DEFAULT_METRICS,
        live_capacity: int = LIVE_BUFFER_CAPACITY_DEFAULT,
        scrub_debounce_ms: int = SCRUB_DEBOUNCE_MS,
        seek_debounce_ms: int = SEEK_COMMIT_DEBOUNCE_MS,
        replay_id: str | None = None,
    ) -> None:
        self._backend = backend
        self._metrics = metrics
        self._replay_id = replay_id
        self._close_tasks: set[Task[None]] = set()

        self.mode: ViewMode = ViewMode.LIVE

        # ------------------------------------------------------------------
        # Live
        # ------------------------------------------------------------------
        self.live = LiveRingBuffer(live_capacity)
        self._live_query = LiveWindowQuery(self.live)
        self.live_paused: bool = False
        self.latest_record: Payload | None = None
        self.throughput = ThroughputMeter()

        # ------------------------------------------------------------------
        # Replay
        # ------------------------------------------------------------------
        self.cache = ReplayCache(backend, metrics=metrics, replay_id=replay_id)
        self.runtime = PlaybackRuntime(
            cache=self.cache,
            backend=backend,
            scrub_debounce_ms=scrub_debounce_ms,
            seek_debounce_ms=seek_debounce_ms,
            replay_id=replay_id,
        )
        self.replay_info: ReplayInfo | None = None

    @staticmethod
    def from_config(config: AppConfig, backend: FrameBackend) -> ViewerSession:
        return ViewerSession(
            backend,
            live_capacity=config.live_buffer_capacity,
            scrub_debounce_ms=config.scrub_debounce_ms,
            seek_debounce_ms=config.seek_debounce_ms,
            replay_id=config.replay_id,
        )

    # ------------------------------------------------------------------
    # Live stream
    # ------------------------------------------------------------------

    def on_live_record(self, record: Payload, now_ms: float | None = None) -> Sample | None:
        """
        Ingest one live record stamped with its arrival time.

        Arrivals always count toward throughput; the sample is only
        buffered while the live stream is not paused.
        """
        now = _now_ms() if now_ms is None else now_ms
        self.throughput.record(now)
        if self.live_paused:
            return None

        sample = self._metrics.build_sample(record, int(now))
        self.live.push(sample)
        self.latest_record = sample.payload
        return sample

    def on_live_disconnect(self) -> None:
        self.throughput.reset()
        log_event({
            "event_type": "LIVE_STREAM_DISCONNECTED",
            "level": "WARNING",
            "buffered": len(self.live),
        })

    # ------------------------------------------------------------------
    # Replay lifecycle
    # ------------------------------------------------------------------

    async def enter_replay(self, info: ReplayInfo) -> None:
        """
        Switch to replay of a recording.

        The cache is reset on entry so no sample from a previous recording
        survives, then sized from the recording metadata. Cursor, play
        state and speed are restored from the server-side session.
        """
        self.cache.reset()
        self.cache.configure(total_frames=info.total_frames, tick_rate=info.tick_rate)

        last = max(info.total_frames - 1, 0)
        speed = min(max(info.playback_speed, PLAYBACK_SPEED_MIN), PLAYBACK_SPEED_MAX)
        self.runtime.adopt(PlaybackState(
            total_frames=info.total_frames,
            tick_rate=info.tick_rate,
            cursor=min(max(info.current_frame, 0), last),
            mode=PlaybackMode.PLAYING if info.playing else PlaybackMode.STOPPED,
            speed=speed,
        ))

        self.replay_info = info
        self.mode = ViewMode.REPLAY
        self.throughput.reset()

        log_event({
            "event_type": "REPLAY_ENTERED",
            "replay_id": self._replay_id,
            "total_frames": info.total_frames,
            "tick_rate": info.tick_rate,
            "track_name": info.track_name,
            "car_name": info.car_name,
        })

        await self.cache.ensure_loaded(self.runtime.fields)

    async def exit_replay(self) -> None:
        """
        Back to live. Cancels every replay fetch and drops the cache.

        The server-side replay is closed fire-and-forget; a failed close is
        logged and never blocks the switch.
        """
        if self.mode is not ViewMode.REPLAY:
            return

        task = asyncio.create_task(self._close_replay())
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

        await self.runtime.shutdown()
        self.runtime.adopt(PlaybackState())

        self.replay_info = None
        self.mode = ViewMode.LIVE
        self.throughput.reset()

        log_event({
            "event_type": "REPLAY_EXITED",
            "replay_id": self._replay_id,
        })

    async def wait_idle(self) -> None:
        """Wait for pending replay loads, control posts and the replay close."""
        await self.runtime.wait_idle()
        if self._close_tasks:
            await asyncio.gather(*list(self._close_tasks), return_exceptions=True)

    async def _close_replay(self) -> None:
        try:
            await self._backend.close_replay()
        except asyncio.CancelledError:
            raise
        except ReplayError as exc:
            log_event({
                "event_type": "REPLAY_CLOSE_FAILED",
                "level": "WARNING",
                "replay_id": self._replay_id,
                "message": str(exc),
            })
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "REPLAY_CLOSE_FAILED",
                "level": "ERROR",
                "replay_id": self._replay_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def context(
        self,
        *,
        now_ms: float | None = None,
        window_ms: int = WINDOW_MS_DEFAULT,
        crosshair_ms: float | None = None,
    ) -> ViewContext:
        """Build the per-tick context for the current source."""
        return ViewContext(
            mode=self.mode,
            now_ms=_now_ms() if now_ms is None else now_ms,
            window_ms=window_ms,
            crosshair_ms=crosshair_ms,
        )

    def window(self, ctx: ViewContext) -> WindowView:
        if ctx.mode is ViewMode.REPLAY:
            return self.cache.query(ctx)
        return self._live_query.query(ctx)

    def expected_rate(self) -> float:
        if self.mode is ViewMode.REPLAY:
            state = self.runtime.state
            return state.tick_rate * state.speed
        return float(LIVE_TICK_RATE_DEFAULT)

    def throughput_percent(self, now_ms: float | None = None) -> int | None:
        now = _now_ms() if now_ms is None else now_ms
        return self.throughput.percent(now, self.expected_rate())

    def snapshot(self) -> dict[str, Any]:
        """Lightweight snapshot for logging."""
        return {
            "mode": self.mode.value,
            "live": self.live.snapshot(),
            "live_paused": self.live_paused,
            "replay": self.cache.snapshot(),
            "playback_mode": self.runtime.state.mode.value,
        }
