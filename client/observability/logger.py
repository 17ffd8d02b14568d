"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_lines: bool = True
_min_level: int = _LEVELS["INFO"]


def configure(*, enable_json_logs: bool = True, log_level: str = "INFO") -> None:
    """
    Apply process-wide logging options from AppConfig.

    Unknown level names fall back to INFO.
    """
    global _json_lines, _min_level  # pylint: disable=global-statement
    _json_lines = enable_json_logs
    _min_level = _LEVELS.get(log_level.upper(), _LEVELS["INFO"])


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller supplies a flat event dict with at least `event_type`.
    Optional `level` (DEBUG/INFO/WARNING/ERROR, default INFO) is used
    for filtering only.

    This function:
    - Stamps ts_ms when the caller did not
    - Serializes to JSON (or key=value text when JSON logs are off)
    - Writes exactly one line
    - Never raises
    """
    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _min_level:
        return

    payload: dict[str, Any] = dict(event)
    payload.setdefault("ts_ms", int(time.time() * 1000))

    if not _json_lines:
        _print(_format_text(payload))
        return

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback, logging must never crash the caller
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def _format_text(payload: Mapping[str, Any]) -> str:
    head = payload.get("event_type", "EVENT")
    rest = " ".join(
        f"{k}={v!r}" for k, v in payload.items() if k not in ("event_type", "ts_ms")
    )
    return f"{payload['ts_ms']} {head} {rest}".rstrip()
