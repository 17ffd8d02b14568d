"""
Arrival-rate meter for the incoming telemetry stream.
"""

from __future__ import annotations

from collections import deque

from constants import THROUGHPUT_WINDOW_MS


class ThroughputMeter:
    """
    Measures received frames per second over a trailing window and
    reports it as a percentage of the expected rate.

    Fewer than two arrivals in the window means "unknown" (None).
    """

    def __init__(self, window_ms: float = THROUGHPUT_WINDOW_MS) -> None:
        self._window_ms = window_ms
        self._arrivals: deque[float] = deque()

    def record(self, now_ms: float) -> None:
        self._arrivals.append(now_ms)
        self._evict(now_ms)

    def reset(self) -> None:
        self._arrivals.clear()

    def fps(self, now_ms: float) -> float | None:
        self._evict(now_ms)
        if len(self._arrivals) < 2:
            return None
        elapsed_s = (now_ms - self._arrivals[0]) / 1000.0
        if elapsed_s <= 0:
            return None
        return (len(self._arrivals) - 1) / elapsed_s

    def percent(self, now_ms: float, expected_rate: float) -> int | None:
        fps = self.fps(now_ms)
        if fps is None or expected_rate <= 0:
            return None
        return round(fps / expected_rate * 100)

    def _evict(self, now_ms: float) -> None:
        while self._arrivals and now_ms - self._arrivals[0] >= self._window_ms:
            self._arrivals.popleft()
