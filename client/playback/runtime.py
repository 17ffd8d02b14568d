"""
Runtime execution shell for replay playback.

Responsibilities:
- Own the authoritative playback state
- Call the pure reducer
- Mirror cursor / scrub state into the replay cache
- Execute effects (server control sync, cache loads, logging)
- Drive the playback clock from render ticks

Non-responsibilities:
- Playback decisions (see playback.clock)
- Fetch / merge / cancellation policy (see buffers.replay_cache)
"""

from __future__ import annotations

import asyncio
import time
from asyncio import Task
from typing import Any

from buffers.replay_cache import ReplayCache
from constants import SCRUB_DEBOUNCE_MS, SEEK_COMMIT_DEBOUNCE_MS
from observability.logger import log_event
from playback.clock import reduce
from playback.commands import Command, Tick
from playback.effects import Effect, LoadTrigger, LogEvent, RequestLoad, SendControl
from playback.state import PlaybackState
from telemetry.field_mask import FieldMask
from transport.backend import ControlAction, FrameBackend
from transport.errors import ReplayError


def _now_ms() -> float:
    return time.monotonic_ns() / 1_000_000


class PlaybackRuntime:
    """
    Runtime execution boundary for one replay session.

    Guarantees:
    - The reducer is called exactly once per command
    - State is updated and mirrored into the cache before any effect runs
    - Effects are executed in reducer-emitted order
    - Control posts never block playback and are never retried
    """

    def __init__(
        self,
        *,
        cache: ReplayCache,
        backend: FrameBackend,
        initial_state: PlaybackState | None = None,
        scrub_debounce_ms: int = SCRUB_DEBOUNCE_MS,
        seek_debounce_ms: int = SEEK_COMMIT_DEBOUNCE_MS,
        replay_id: str | None = None,
    ) -> None:
        self._cache = cache
        self._backend = backend
        self._state = initial_state or PlaybackState()
        self._scrub_debounce_ms = scrub_debounce_ms
        self._seek_debounce_ms = seek_debounce_ms
        self._replay_id = replay_id

        # Sections needed by the visible metrics; None fetches everything
        self.fields: FieldMask | None = None

        # cursor chunk -> ensure_loaded task started for it
        self._load_tasks: dict[int, Task[None]] = {}
        self._control_tasks: set[Task[None]] = set()

        self._mirror()

    @property
    def state(self) -> PlaybackState:
        """Current immutable playback state. Only the runtime replaces it."""
        return self._state

    @property
    def cache(self) -> ReplayCache:
        return self._cache

    def adopt(self, state: PlaybackState) -> None:
        """
        Install a state wholesale (session start / restore).

        Bypasses the reducer; no effects are produced.
        """
        self._state = state
        self._mirror()
        log_event({
            "event_type": "PLAYBACK_STATE_ADOPTED",
            "replay_id": self._replay_id,
            "cursor": state.cursor,
            "total_frames": state.total_frames,
            "mode": state.mode.value,
            "speed": state.speed,
        })

    async def handle(self, command: Command) -> None:
        """
        Single entry point for every playback command.

        1. Reduce
        2. Swap in the new state and mirror it into the cache
        3. Execute effects in order
        """
        new_state, effects = reduce(self._state, command)
        self._state = new_state
        self._mirror()

        for effect in effects:
            self._execute(effect)

    async def tick(self, now_ms: float | None = None) -> None:
        """
        Render-clock tick.

        Advances the clock, then keeps the cursor region loaded while
        playing (or whenever the cursor sits on a missing chunk). Loading
        is left to debounced requests while a drag is in progress.
        """
        await self.handle(Tick(now_ms=_now_ms() if now_ms is None else now_ms))

        if self._state.scrubbing or self._state.total_frames <= 0:
            return
        if self._state.playing or self._cache.needs_fetch():
            self._schedule_load()

    async def wait_idle(self) -> None:
        """Wait for pending loads and control posts (tests, shutdown)."""
        if self._load_tasks:
            await asyncio.gather(*list(self._load_tasks.values()), return_exceptions=True)
        if self._control_tasks:
            await asyncio.gather(*list(self._control_tasks), return_exceptions=True)
        await self._cache.wait_idle()

    async def shutdown(self) -> None:
        """
        Clean shutdown of the runtime.

        Cancels pending loads and control posts, then resets the cache.
        """
        pending: list[Task[Any]] = [*self._control_tasks, *self._load_tasks.values()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._control_tasks.clear()
        self._load_tasks.clear()
        self._cache.reset()

    # ------------------------------------------------------------------
    # Effect execution (side effects)
    # ------------------------------------------------------------------

    def _execute(self, effect: Effect) -> None:
        if isinstance(effect, LogEvent):
            log_event({
                **effect.event,
                "replay_id": self._replay_id,
            })

        elif isinstance(effect, SendControl):
            task = asyncio.create_task(self._send_control(effect.action, effect.value))
            self._control_tasks.add(task)
            task.add_done_callback(self._control_tasks.discard)

        elif isinstance(effect, RequestLoad):
            if effect.trigger is LoadTrigger.SCRUB:
                self._cache.ensure_loaded_debounced(self._scrub_debounce_ms, self.fields)
            elif effect.trigger is LoadTrigger.COMMIT:
                self._cache.ensure_loaded_debounced(self._seek_debounce_ms, self.fields)
            else:
                self._schedule_load()

        else:
            log_event({
                "event_type": "PLAYBACK_UNKNOWN_EFFECT",
                "level": "WARNING",
                "replay_id": self._replay_id,
                "effect": type(effect).__name__,
            })

    def _schedule_load(self) -> None:
        # One outstanding ensure_loaded per cursor chunk; a stalled fetch
        # must not block loading once the cursor moves on
        chunk = self._cache.chunk_index(self._cache.cursor)
        pending = self._load_tasks.get(chunk)
        if pending is not None and not pending.done():
            return

        task = asyncio.create_task(self._cache.ensure_loaded(self.fields))
        self._load_tasks[chunk] = task

        def _forget(done: Task[None]) -> None:
            if self._load_tasks.get(chunk) is done:
                del self._load_tasks[chunk]

        task.add_done_callback(_forget)

    async def _send_control(self, action: ControlAction, value: float | None) -> None:
        try:
            await self._backend.post_control(action, value)
        except asyncio.CancelledError:
            raise
        except ReplayError as exc:
            log_event({
                "event_type": "REPLAY_CONTROL_FAILED",
                "level": "WARNING",
                "replay_id": self._replay_id,
                "action": action.value,
                "value": value,
                "message": str(exc),
            })
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "REPLAY_CONTROL_FAILED",
                "level": "ERROR",
                "replay_id": self._replay_id,
                "action": action.value,
                "value": value,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    def _mirror(self) -> None:
        """Push the cursor / scrub flag into the cache (the shared cursor)."""
        # Cache not sized for this recording yet
        if self._cache.total_frames != self._state.total_frames:
            return
        self._cache.cursor = self._state.cursor
        self._cache.scrubbing = self._state.scrubbing
