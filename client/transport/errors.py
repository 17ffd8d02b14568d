"""
Replay transport error taxonomy.

- FrameFetchError: network / HTTP failure. The chunk stays unfetched and is
  retried on the next ensure_loaded cycle.
- MalformedResponseError: the body could not be interpreted as a frame
  range. The merge is skipped; cache state is left unchanged.

Cancellation is NOT an error and never maps to these types.
Stale-but-valid responses are NOT errors either (merge step discards them).
"""

from __future__ import annotations


class ReplayError(Exception):
    """Base class for recoverable replay-layer failures."""


class FrameFetchError(ReplayError):
    """Transport-level failure while talking to the frames backend."""


class MalformedResponseError(ReplayError):
    """Backend answered, but the payload is not a valid frame range."""
