"""OS-level notification backends.

``ConsoleNotificationBackend`` is the development default. ``APNsNotificationBackend``
delivers alerts to the user's phone through Apple Push Notification service.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

import httpx
import jwt  # PyJWT

from ..config import settings
from ..models import Permission

log = logging.getLogger(__name__)


class PushResult:
    def __init__(self, ok: bool, status: int, detail: str):
        self.ok = ok
        self.status = status
        self.detail = detail

    def dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "status": self.status, "detail": self.detail}


class NotificationHandle:
    """A rendered notification that can be closed or clicked."""

    def __init__(self, title: str, on_close: Callable[[], None] | None = None) -> None:
        self.title = title
        self.closed = False
        self.on_click: Callable[[], None] | None = None
        self._on_close = on_close

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()

    def click(self) -> None:
        if self.on_click is not None:
            self.on_click()


class NotificationBackend(Protocol):
    def permission(self) -> Permission:
        ...

    async def request_permission(self) -> Permission:
        ...

    async def show(self, title: str, body: str) -> NotificationHandle:
        ...


class ConsoleNotificationBackend:
    def __init__(self, permission: Permission = Permission.DEFAULT) -> None:
        self._permission = permission

    def permission(self) -> Permission:
        return self._permission

    async def request_permission(self) -> Permission:
        if self._permission == Permission.DEFAULT:
            self._permission = Permission.GRANTED
        return self._permission

    async def show(self, title: str, body: str) -> NotificationHandle:
        print(f"[NOTIFICATION] title={title!r} body={body!r}")
        return NotificationHandle(title, on_close=lambda: print(f"[NOTIFICATION] closed {title!r}"))


class APNsNotificationBackend:
    """
    Token-based APNs using HTTP/2.
    Requires:
      - APNS_TEAM_ID  (Apple Developer Team ID)
      - APNS_KEY_ID  (Key ID of your .p8)
      - APNS_PRIVATE_KEY or APNS_PRIVATE_KEY_PATH
      - APNS_BUNDLE_ID (topic)
      - APNS_DEVICE_TOKEN (the phone registered for this user)

    Permission is granted by the device when it registers for remote
    notifications, so it is "granted" when a device token is configured and
    "unsupported" otherwise.
    """

    def __init__(self, device_token: str | None = None, auto_close_seconds: float | None = None) -> None:
        self.team_id = settings.APNS_TEAM_ID
        self.key_id = settings.APNS_KEY_ID
        self.bundle_id = settings.APNS_BUNDLE_ID
        self.device_token = device_token if device_token is not None else settings.APNS_DEVICE_TOKEN
        self.private_key = settings.get_apns_private_key()
        self.auto_close_seconds = (
            settings.NOTIFICATION_AUTO_CLOSE_SECONDS if auto_close_seconds is None else auto_close_seconds
        )
        self.base_url = (
            "https://api.development.push.apple.com"
            if settings.APNS_USE_SANDBOX
            else "https://api.push.apple.com"
        )
        self._client: httpx.AsyncClient | None = None
        # Cache JWT to avoid TooManyProviderTokenUpdates (429) from Apple
        self._cached_jwt: str | None = None
        self._jwt_issued_at: float = 0

        log.info(f"[APNS] Initialized: team={self.team_id}, key={self.key_id}, "
                 f"bundle={self.bundle_id}, sandbox={settings.APNS_USE_SANDBOX}")

    def permission(self) -> Permission:
        return Permission.GRANTED if self.device_token else Permission.UNSUPPORTED

    async def request_permission(self) -> Permission:
        return self.permission()

    def _provider_jwt(self) -> str:
        now = int(time.time())
        # Reuse cached JWT if less than 50 minutes old (Apple allows 60 min)
        if self._cached_jwt is not None and (now - self._jwt_issued_at) < 3000:
            return self._cached_jwt
        # Apple only wants 'alg' and 'kid' in the header
        headers = {"alg": "ES256", "kid": self.key_id}
        payload = {"iss": self.team_id, "iat": now}
        token = jwt.encode(payload, self.private_key, algorithm="ES256", headers=headers)
        self._cached_jwt = token if isinstance(token, str) else token.decode("utf-8")
        self._jwt_issued_at = now
        log.debug("[APNS] Generated new provider JWT")
        return self._cached_jwt

    async def _client_ctx(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(http2=True, timeout=10)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, title: str, body: str, data: dict | None = None) -> PushResult:
        c = await self._client_ctx()
        url = f"{self.base_url}/3/device/{self.device_token}"
        headers = {
            "authorization": f"bearer {self._provider_jwt()}",
            "apns-topic": self.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
            # Undelivered alerts expire with the auto-close window
            "apns-expiration": str(int(time.time() + self.auto_close_seconds)),
            "content-type": "application/json",
        }
        payload: dict[str, Any] = {
            "aps": {
                "alert": {"title": title, "body": body},
                "sound": "default",
            }
        }
        if data:
            payload["data"] = data

        r = await c.post(url, headers=headers, json=payload)
        ok = 200 <= r.status_code < 300
        if ok:
            detail = r.headers.get("apns-id", "success")
        else:
            # For errors, the reason is in the response JSON body
            try:
                detail = r.json().get("reason", r.text)
            except ValueError:
                detail = r.text or "unknown error"
        return PushResult(ok=ok, status=r.status_code, detail=detail)

    async def show(self, title: str, body: str) -> NotificationHandle:
        result = await self.send(title, body)
        if not result.ok:
            raise RuntimeError(f"APNs rejected notification: {result.status} {result.detail}")
        log.info(f"[APNS] delivered {title!r}: {result.dict()}")
        # A delivered push cannot be withdrawn; closing only updates local state
        return NotificationHandle(title)


def get_notification_backend() -> NotificationBackend:
    if settings.NOTIFICATION_BACKEND.lower() == "apns":
        return APNsNotificationBackend()
    return ConsoleNotificationBackend()
