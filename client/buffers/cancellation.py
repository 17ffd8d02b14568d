"""
Scoped cancellation for replay fetches.

Responsibilities:
- Tag every fetch task with the scope it was issued under
- Provide a single supersede() that invalidates the previous scope and
  cancels its tasks
- Let fetch code re-check its scope after each suspension point

Non-responsibilities:
- NO retry logic
- NO merge decisions
- NO timers or timeouts

Scope ids are monotonic integers and are never reused.
"""

from __future__ import annotations

import asyncio
from asyncio import Task
from typing import Any


class CancellationScope:
    """
    One cancellation episode (e.g. one scrub-driven fetch cycle).

    A scope only ever moves from active to cancelled.
    """

    def __init__(self, scope_id: int) -> None:
        self.scope_id = scope_id
        self._cancelled = False
        self._tasks: set[Task[Any]] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def track(self, task: Task[Any]) -> None:
        """
        Attach a task to this scope.

        Tracking a task on an already-cancelled scope cancels it at once.
        """
        if self._cancelled:
            task.cancel()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> int:
        """Cancel every tracked task. Returns how many were still pending."""
        self._cancelled = True
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        self._tasks.clear()
        return len(pending)

    def pending_count(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationScope(id={self.scope_id}, {state})"


class ScopeManager:
    """
    Owns the current cancellation scope.

    Lifecycle:
    1. Fetches are issued under `current`
    2. A new scrub cycle calls supersede()
    3. Every task of the old scope is cancelled; late results that were
       already in hand are dropped by the caller's scope check
    """

    def __init__(self) -> None:
        self._next_id = 1
        self._current = self._new_scope()

    @property
    def current(self) -> CancellationScope:
        return self._current

    def supersede(self) -> tuple[CancellationScope, int]:
        """
        Invalidate the current scope and start a fresh one.

        Returns (new_scope, cancelled_task_count).
        """
        cancelled = self._current.cancel()
        self._current = self._new_scope()
        return self._current, cancelled

    def spawn(self, coro: Any, scope: CancellationScope | None = None) -> Task[Any]:
        """Create a task tracked by scope (default: the current scope)."""
        task = asyncio.create_task(coro)
        (scope or self._current).track(task)
        return task

    def _new_scope(self) -> CancellationScope:
        scope = CancellationScope(self._next_id)
        self._next_id += 1
        return scope
