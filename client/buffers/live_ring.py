"""
Fixed-capacity ring buffer for live telemetry samples.

Rules:
- push() never fails; once full, the oldest sample is overwritten
- Callers supply non-decreasing timestamps; the buffer does not check
- Indices handed to consumers are LOGICAL: 0 is the oldest stored sample
- Deterministic, synchronous behavior (single event loop, no locks)
"""

from __future__ import annotations

from typing import Any

from telemetry.sample import Sample


class LiveRingBuffer:
    """
    Circular store of processed live samples.

    Physical storage wraps; every public accessor works on the logical
    oldest-to-newest view so consumers never deal with the wrap point.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity: int = capacity
        self._ring: list[Sample | None] = [None] * capacity
        self._head: int = 0   # next write position
        self._count: int = 0  # number of valid entries

    # -------------------------
    # Core operations
    # -------------------------

    def push(self, sample: Sample) -> None:
        """Append at the write pointer, overwriting the oldest once full."""
        self._ring[self._head] = sample
        self._head = (self._head + 1) % self._capacity
        if self._count < self._capacity:
            self._count += 1

    def window_range(self, duration_ms: float, now_ms: float) -> tuple[int, int]:
        """
        Return (start, count) of the trailing window ending at now_ms.

        start is a logical index: the first sample with
        timestamp >= now_ms - duration_ms (lower bound, inclusive).
        A duration longer than the stored span returns everything.
        """
        if self._count == 0:
            return 0, 0

        cutoff = now_ms - duration_ms
        oldest = self._oldest_physical()

        lo, hi = 0, self._count
        while lo < hi:
            mid = (lo + hi) // 2
            entry = self._ring[(oldest + mid) % self._capacity]
            assert entry is not None
            if entry.timestamp_ms < cutoff:
                lo = mid + 1
            else:
                hi = mid

        return lo, self._count - lo

    def at(self, index: int) -> Sample:
        """O(1) access by logical index (0 = oldest)."""
        if not 0 <= index < self._count:
            raise IndexError(f"ring index {index} out of range [0, {self._count})")
        entry = self._ring[(self._oldest_physical() + index) % self._capacity]
        assert entry is not None
        return entry

    def latest(self) -> Sample | None:
        """Most recently pushed sample, or None if empty."""
        if self._count == 0:
            return None
        return self._ring[(self._head - 1) % self._capacity]

    def latest_timestamp(self) -> int | None:
        """Timestamp of the newest sample, or None if empty."""
        entry = self.latest()
        return entry.timestamp_ms if entry is not None else None

    def clear(self) -> None:
        """Drop all samples."""
        self._ring = [None] * self._capacity
        self._head = 0
        self._count = 0

    # -------------------------
    # Introspection helpers
    # -------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count

    def is_empty(self) -> bool:
        return self._count == 0

    def snapshot(self) -> dict[str, Any]:
        """Lightweight snapshot for logging."""
        return {
            "count": self._count,
            "capacity": self._capacity,
            "oldest_ts_ms": self.at(0).timestamp_ms if self._count else None,
            "latest_ts_ms": self.latest_timestamp(),
        }

    def _oldest_physical(self) -> int:
        return 0 if self._count < self._capacity else self._head
