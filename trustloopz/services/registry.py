"""Explicit registry of live subscriptions (sockets, tracking sessions)."""
from __future__ import annotations

import logging
import threading
from typing import Callable

log = logging.getLogger(__name__)

Closer = Callable[[], None]


class SubscriptionRegistry:
    """Keeps at most one live subscription per key.

    Registering a key that is already live closes the previous subscription
    first, so re-subscribing never duplicates side effects.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Closer] = {}
        self._lock = threading.Lock()

    def register(self, key: str, closer: Closer) -> None:
        with self._lock:
            previous = self._entries.get(key)
            self._entries[key] = closer
        if previous is not None and previous is not closer:
            log.info(f"[Registry] replacing live subscription {key}")
            previous()

    def deregister(self, key: str, closer: Closer | None = None) -> bool:
        """Close and forget ``key``. With ``closer``, only if it is still the live one."""
        with self._lock:
            current = self._entries.get(key)
            if current is None or (closer is not None and current is not closer):
                return False
            del self._entries[key]
        current()
        return True

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def close_all(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for closer in entries:
            closer()
