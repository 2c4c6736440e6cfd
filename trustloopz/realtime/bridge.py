"""Live socket subscription that forwards route-deviation events for one trip."""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Callable

import websocket  # websocket-client
from pydantic import ValidationError

from ..config import get_settings
from ..models import DeviationEvent
from ..services.registry import SubscriptionRegistry

settings = get_settings()
log = logging.getLogger(__name__)

ROUTE_DEVIATION = "route-deviation"
REGISTRY_KEY = "realtime-socket"

DeviationHandler = Callable[[DeviationEvent], None]


def parse_deviation(raw: str | bytes, trip_id: int) -> DeviationEvent | None:
    """Return the deviation event carried by ``raw`` for ``trip_id``, if any.

    Messages of other types or for other trips yield None. Malformed
    payloads are logged and also yield None.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        log.error(f"[Realtime] Error parsing WebSocket message: {e}")
        return None
    if not isinstance(data, dict):
        log.error(f"[Realtime] Ignoring non-object WebSocket message: {data!r}")
        return None
    if data.get("type") != ROUTE_DEVIATION:
        return None
    if data.get("tripId") != trip_id:
        return None
    try:
        return DeviationEvent(
            trip_id=data["tripId"],
            message=data["message"],
            distance_from_route_km=float(data["distanceFromRoute"]),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        log.error(f"[Realtime] Dropping malformed route-deviation message {data!r}: {e}")
        return None


class _Connection:
    """One socket plus its reconnect timer, living on a background thread."""

    def __init__(
        self,
        url: str,
        trip_id: int,
        handler: DeviationHandler,
        reconnect_seconds: float,
        loop: asyncio.AbstractEventLoop | None,
        app_factory: Callable[..., Any],
    ) -> None:
        self.url = url
        self.trip_id = trip_id
        self.handler = handler
        self.reconnect_seconds = reconnect_seconds
        self.loop = loop
        self.app_factory = app_factory
        self.app: Any = None
        self.connected = False
        self.closed = False
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self.closed:
                return
            log.info(f"[Realtime] Connecting to WebSocket: {self.url}")
            self.app = self.app_factory(
                self.url,
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            app = self.app
        thread = threading.Thread(target=app.run_forever, name="trustloopz-ws", daemon=True)
        thread.start()

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            app = self.app
        self.connected = False
        if app is not None:
            app.close()
        log.info("[Realtime] WebSocket connection closed by subscriber")

    def _on_open(self, ws) -> None:
        self.connected = True
        log.info("[Realtime] WebSocket connection established")

    def _on_message(self, ws, message) -> None:
        event = parse_deviation(message, self.trip_id)
        if event is None:
            return
        if self.loop is not None:
            self.loop.call_soon_threadsafe(self._deliver, event)
        else:
            self._deliver(event)

    def _deliver(self, event: DeviationEvent) -> None:
        if self.closed:
            return
        try:
            self.handler(event)
        except Exception as e:
            log.error(f"[Realtime] route-deviation handler failed: {e}", exc_info=True)

    def _on_error(self, ws, error) -> None:
        # on_close follows
        log.error(f"[Realtime] WebSocket error: {error}")

    def _on_close(self, ws, close_status_code=None, close_msg=None) -> None:
        self.connected = False
        with self._lock:
            if self.closed:
                return
            log.info(f"[Realtime] WebSocket closed ({close_status_code}); reconnecting in {self.reconnect_seconds}s")
            self._timer = threading.Timer(self.reconnect_seconds, self.start)
            self._timer.daemon = True
            self._timer.start()


class RealtimeEventBridge:
    """Keeps one user-scoped socket open and routes deviation events to a handler.

    The live connection is tracked in ``registry``; subscribing again closes
    the previous connection before opening the new one.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        ws_url: str | None = None,
        reconnect_seconds: float | None = None,
        app_factory: Callable[..., Any] = websocket.WebSocketApp,
    ) -> None:
        self.registry = registry
        self.ws_url = ws_url or settings.WS_URL
        self.reconnect_seconds = (
            settings.WS_RECONNECT_SECONDS if reconnect_seconds is None else reconnect_seconds
        )
        self.app_factory = app_factory
        self._connection: _Connection | None = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.connected

    def subscribe(
        self,
        user_id: int,
        trip_id: int,
        handler: DeviationHandler,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> Callable[[], None]:
        """Open the socket for ``user_id``; returns the unsubscribe callable.

        With ``loop``, the handler runs on that event loop instead of the
        socket thread.
        """
        connection = _Connection(
            url=f"{self.ws_url}?userId={user_id}",
            trip_id=trip_id,
            handler=handler,
            reconnect_seconds=self.reconnect_seconds,
            loop=loop,
            app_factory=self.app_factory,
        )
        closer = connection.close
        self.registry.register(REGISTRY_KEY, closer)
        self._connection = connection
        connection.start()

        def unsubscribe() -> None:
            self.registry.deregister(REGISTRY_KEY, closer)
            if self._connection is connection:
                self._connection = None

        return unsubscribe
