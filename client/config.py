"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No buffering logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    LIVE_BUFFER_CAPACITY_DEFAULT,
    SCRUB_DEBOUNCE_MS,
    SEEK_COMMIT_DEBOUNCE_MS,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the viewer session and the backend client.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Replay backend
    # ------------------------------------------------------------------

    backend_base_url: str
    replay_id: str | None

    # None means "no timeout": abandoned requests are either cancelled
    # explicitly or discarded by the merge step.
    request_timeout_s: float | None

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    live_buffer_capacity: int
    scrub_debounce_ms: int
    seek_debounce_ms: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        timeout_raw = os.environ.get("TELEMETRY_REQUEST_TIMEOUT_S", "").strip()

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            backend_base_url=os.environ.get(
                "TELEMETRY_BACKEND_URL", "http://127.0.0.1:9100/api/replay"
            ),
            replay_id=os.environ.get("TELEMETRY_REPLAY_ID") or None,
            request_timeout_s=float(timeout_raw) if timeout_raw else None,

            live_buffer_capacity=int(
                os.environ.get("LIVE_BUFFER_CAPACITY", LIVE_BUFFER_CAPACITY_DEFAULT)
            ),
            scrub_debounce_ms=int(
                os.environ.get("SCRUB_DEBOUNCE_MS", SCRUB_DEBOUNCE_MS)
            ),
            seek_debounce_ms=int(
                os.environ.get("SEEK_DEBOUNCE_MS", SEEK_COMMIT_DEBOUNCE_MS)
            ),
        )
