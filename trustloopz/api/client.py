"""Thin async client for the TrustLoopz REST API."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import settings
from ..exceptions import ApiError, NetworkError

log = logging.getLogger(__name__)


class TripApiClient:
    """Shared HTTP client for the trip endpoints the companion consumes.

    The underlying ``httpx.AsyncClient`` is created lazily and reused for
    every request until :meth:`close` is called.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = settings.API_TOKEN if token is None else token
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _client_ctx(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"accept": "application/json"}
            if self.token:
                headers["authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, path: str, json: dict | None = None) -> Any:
        """Send a request and return the decoded JSON body.

        Raises ApiError for non-2xx answers (with the server's message verbatim)
        and NetworkError for transport failures or bodies that are not JSON.
        """
        c = await self._client_ctx()
        try:
            r = await c.request(method, path, json=json)
        except httpx.HTTPError as e:
            log.warning(f"[API] {method} {path} failed: {e}")
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if not (200 <= r.status_code < 300):
            raise ApiError(r.status_code, _error_message(r))

        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            log.warning(f"[API] {method} {path} returned a non-JSON body")
            raise NetworkError(f"{method} {path} returned an invalid response") from e

    # ---- Endpoints ----
    async def post_location(self, trip_id: int, latitude: float, longitude: float) -> Any:
        return await self.request(
            "POST",
            f"/api/trips/{trip_id}/location",
            json={"latitude": latitude, "longitude": longitude},
        )

    async def get_check_in_status(self, trip_id: int) -> Any:
        return await self.request("GET", f"/api/trips/{trip_id}/check-in-status")

    async def get_user_check_in(self, trip_id: int, user_id: int) -> Any | None:
        """Return the user's check-in, or None when they have not checked in yet."""
        try:
            return await self.request("GET", f"/api/trips/{trip_id}/check-ins/user/{user_id}")
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise

    async def post_check_in(self, trip_id: int, payload: dict) -> Any:
        return await self.request("POST", f"/api/trips/{trip_id}/check-ins", json=payload)


def _error_message(r: httpx.Response) -> str:
    # Server errors carry their reason in a JSON "message" (or "detail") field
    try:
        body = r.json()
        if isinstance(body, dict):
            detail = body.get("message") or body.get("detail")
            if detail:
                return str(detail)
    except ValueError:
        pass
    return r.text or f"{r.status_code} {r.reason_phrase}"
