"""Continuous position watching with normalized samples and classified errors."""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, Protocol

from ..config import get_settings
from ..exceptions import TrustLoopzError
from ..models import LocationSample

settings = get_settings()
log = logging.getLogger(__name__)


class PositionErrorKind(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    POSITION_UNAVAILABLE = "position-unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


ERROR_MESSAGES = {
    PositionErrorKind.PERMISSION_DENIED: (
        "Location tracking permission denied. "
        "Please enable location services to track this trip."
    ),
    PositionErrorKind.POSITION_UNAVAILABLE: (
        "Location information is unavailable. Please check your device settings."
    ),
    PositionErrorKind.TIMEOUT: "Location request timed out. Please try again.",
    PositionErrorKind.UNKNOWN: "Unknown error tracking location",
}

UNSUPPORTED_MESSAGE = "Geolocation is not supported on this device"


class PositionError(TrustLoopzError):
    def __init__(self, kind: PositionErrorKind, detail: str | None = None):
        self.kind = kind
        self.message = ERROR_MESSAGES[kind]
        super().__init__(detail or self.message)


def classify_error(error: BaseException) -> PositionError:
    """Map anything a position source raised onto one of the four error kinds."""
    if isinstance(error, PositionError):
        return error
    if isinstance(error, PermissionError):
        return PositionError(PositionErrorKind.PERMISSION_DENIED, str(error) or None)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return PositionError(PositionErrorKind.TIMEOUT)
    return PositionError(PositionErrorKind.UNKNOWN, str(error) or None)


@dataclass(frozen=True)
class WatchOptions:
    enable_high_accuracy: bool = True
    timeout: float = 10.0
    maximum_age: float = 0


@dataclass(frozen=True)
class Fix:
    """A raw position as delivered by a device."""
    latitude: float
    longitude: float
    accuracy: float | None = None
    timestamp: datetime | None = None


SuccessCallback = Callable[[Fix], None]
ErrorCallback = Callable[[BaseException], None]


class PositionSource(Protocol):
    def watch_position(self, success: SuccessCallback, error: ErrorCallback, options: WatchOptions) -> int:
        ...

    def clear_watch(self, watch_id: int) -> None:
        ...


def normalize(fix: Fix) -> LocationSample:
    return LocationSample(
        latitude=fix.latitude,
        longitude=fix.longitude,
        accuracy=fix.accuracy,
        captured_at=fix.timestamp or datetime.now(UTC),
    )


class PollingPositionSource:
    """Position source that polls an async provider on a fixed interval.

    ``provider`` returns a Fix, ``None`` when no position is available, or
    raises PermissionError when location access is denied. Each call is bounded
    by the watch timeout; a cached fix is never reused.
    """

    def __init__(self, provider: Callable[[], Awaitable[Fix | None]], interval: float | None = None) -> None:
        self.provider = provider
        self.interval = settings.GEOLOCATION_POLL_SECONDS if interval is None else interval
        self._ids = itertools.count(1)
        self._tasks: dict[int, asyncio.Task] = {}

    def watch_position(self, success: SuccessCallback, error: ErrorCallback, options: WatchOptions) -> int:
        watch_id = next(self._ids)
        self._tasks[watch_id] = asyncio.get_running_loop().create_task(
            self._run(watch_id, success, error, options)
        )
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        task = self._tasks.pop(watch_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, watch_id: int, success: SuccessCallback, error: ErrorCallback, options: WatchOptions) -> None:
        while watch_id in self._tasks:
            try:
                fix = await asyncio.wait_for(self.provider(), timeout=options.timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error(e)
                return
            if fix is None:
                error(PositionError(PositionErrorKind.POSITION_UNAVAILABLE))
                return
            success(fix)
            await asyncio.sleep(self.interval)


class ReplayPositionSource:
    """Position source that replays a fixed list of coordinates."""

    def __init__(self, points: Iterable[tuple[float, float]], interval: float = 1.0) -> None:
        self.points = list(points)
        self.interval = interval
        self._ids = itertools.count(1)
        self._tasks: dict[int, asyncio.Task] = {}

    def watch_position(self, success: SuccessCallback, error: ErrorCallback, options: WatchOptions) -> int:
        watch_id = next(self._ids)
        self._tasks[watch_id] = asyncio.get_running_loop().create_task(self._run(watch_id, success))
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        task = self._tasks.pop(watch_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, watch_id: int, success: SuccessCallback) -> None:
        for lat, lon in self.points:
            if watch_id not in self._tasks:
                return
            success(Fix(latitude=lat, longitude=lon, timestamp=datetime.now(UTC)))
            await asyncio.sleep(self.interval)


class GeolocationWatcher:
    """Wraps a PositionSource and owns at most one active watch."""

    def __init__(self, source: PositionSource | None, timeout: float | None = None) -> None:
        self.source = source
        self.options = WatchOptions(
            enable_high_accuracy=True,
            timeout=settings.GEOLOCATION_TIMEOUT_SECONDS if timeout is None else timeout,
            maximum_age=0,
        )
        self._watch_id: int | None = None

    @property
    def is_supported(self) -> bool:
        return self.source is not None

    @property
    def is_watching(self) -> bool:
        return self._watch_id is not None

    def start(
        self,
        on_sample: Callable[[LocationSample], None],
        on_error: Callable[[PositionError], None],
    ) -> int | None:
        """Begin watching; returns the watch handle, or None if unsupported.

        Calling start while a watch is active returns the existing handle.
        """
        if self.source is None:
            log.warning("[Geolocation] no position source available")
            return None
        if self._watch_id is not None:
            return self._watch_id

        handle_box: list[int] = []

        def success(fix: Fix) -> None:
            if not handle_box or self._watch_id != handle_box[0]:
                return
            try:
                sample = normalize(fix)
            except ValueError as e:
                log.warning(f"[Geolocation] dropping invalid fix {fix}: {e}")
                return
            on_sample(sample)

        def failure(err: BaseException) -> None:
            if not handle_box or self._watch_id != handle_box[0]:
                return
            position_error = classify_error(err)
            log.warning(f"[Geolocation] watch {handle_box[0]} failed: {position_error.kind.value}")
            self.stop(handle_box[0])
            on_error(position_error)

        watch_id = self.source.watch_position(success, failure, self.options)
        handle_box.append(watch_id)
        self._watch_id = watch_id
        log.info(f"[Geolocation] watch {watch_id} started")
        return watch_id

    def stop(self, handle: int | None = None) -> None:
        """Cancel the active watch. Stale or missing handles are ignored."""
        if self._watch_id is None:
            return
        if handle is not None and handle != self._watch_id:
            return
        watch_id, self._watch_id = self._watch_id, None
        if self.source is not None:
            self.source.clear_watch(watch_id)
        log.info(f"[Geolocation] watch {watch_id} stopped")
