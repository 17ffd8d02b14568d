"""
httpx implementation of FrameBackend.

Endpoints (relative to base_url):
- GET    frames?start=&count=&fields=&rid=   -> [{"i": int, "f": {...}}]
- POST   control {"action": ..., "value"?: number}
- GET    info                                -> replay metadata
- DELETE ""                                  -> close the replay

No retries, no backoff, no implicit timeout unless configured.
"""

from __future__ import annotations

from typing import Any

import httpx

from config import AppConfig
from telemetry.field_mask import FieldMask
from transport.backend import ControlAction, FrameRecord, ReplayInfo, parse_frames
from transport.errors import FrameFetchError, MalformedResponseError


class HttpFrameBackend:
    """
    Paged frames client over a shared httpx.AsyncClient.

    The client is created lazily unless injected (tests inject one built
    on httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        base_url: str,
        replay_id: str | None = None,
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._replay_id = replay_id
        self._timeout = httpx.Timeout(timeout_s)
        self._client = client
        self._owns_client = client is None

    @staticmethod
    def from_config(config: AppConfig) -> HttpFrameBackend:
        return HttpFrameBackend(
            base_url=config.backend_base_url,
            replay_id=config.replay_id,
            timeout_s=config.request_timeout_s,
        )

    # ------------------------------------------------------------------
    # FrameBackend contract
    # ------------------------------------------------------------------

    async def get_frames(
        self,
        *,
        start: int,
        count: int,
        fields: FieldMask | None = None,
    ) -> list[FrameRecord]:
        params: dict[str, Any] = {"start": start, "count": count}
        mask = fields.to_query() if fields is not None else None
        if mask:
            params["fields"] = mask
        if self._replay_id:
            params["rid"] = self._replay_id

        body = await self._request_json("GET", f"{self._base_url}/frames", params=params)
        return parse_frames(body, start=start, count=count)

    async def post_control(
        self,
        action: ControlAction,
        value: float | None = None,
    ) -> None:
        payload: dict[str, Any] = {"action": action.value}
        if value is not None:
            payload["value"] = value
        await self._request_json("POST", f"{self._base_url}/control", json=payload)

    # ------------------------------------------------------------------
    # Session metadata
    # ------------------------------------------------------------------

    async def get_info(self) -> ReplayInfo:
        body = await self._request_json("GET", f"{self._base_url}/info")
        if not isinstance(body, dict):
            raise MalformedResponseError("replay info is not an object")
        return ReplayInfo.from_json(body)

    async def close_replay(self) -> None:
        await self._request_json("DELETE", self._base_url)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self._http().request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FrameFetchError(
                f"{method} {url} -> {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise FrameFetchError(f"{method} {url} failed: {type(exc).__name__}: {exc}") from exc

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{method} {url} returned invalid JSON") from exc
