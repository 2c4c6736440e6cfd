"""Live location tracking session for an in-progress trip."""
from __future__ import annotations

import asyncio
import logging

from ..exceptions import TrustLoopzError
from ..messaging.toast import Toaster
from ..models import DeviationEvent, DeviationState, LocationSample
from ..realtime.bridge import RealtimeEventBridge
from .deviation import evaluate
from .geolocation import UNSUPPORTED_MESSAGE, GeolocationWatcher, PositionError
from .location_reporter import LocationReporter
from .notifications import NotificationDispatcher
from .registry import SubscriptionRegistry

log = logging.getLogger(__name__)

REPORT_FAILED_MESSAGE = "Failed to send location update to server"


def deviation_alert_body(message: str, distance_km: float) -> str:
    return f"{message}. Distance from route: {distance_km:.2f}km"


class TripTracker:
    """Watches the device position while active and reacts to route deviations.

    Samples are reported one by one; a report still in flight when tracking
    stops is allowed to finish but its result is discarded. Deviation state is
    written by both report responses and socket events; the last write wins.
    """

    def __init__(
        self,
        trip_id: int,
        watcher: GeolocationWatcher,
        reporter: LocationReporter,
        dispatcher: NotificationDispatcher,
        toaster: Toaster,
        registry: SubscriptionRegistry,
        bridge: RealtimeEventBridge | None = None,
        user_id: int | None = None,
    ) -> None:
        self.trip_id = trip_id
        self.watcher = watcher
        self.reporter = reporter
        self.dispatcher = dispatcher
        self.toaster = toaster
        self.registry = registry
        self.bridge = bridge
        self.user_id = user_id

        self.is_tracking = False
        self.location: LocationSample | None = None
        self.deviation: DeviationState | None = None
        self.error: str | None = None

        self._handle: int | None = None
        self._generation = 0
        self._unsubscribe = None
        self._unsupported_reported = False
        self._pending: set[asyncio.Task] = set()
        self._closer = self._stop_silently

    @property
    def registry_key(self) -> str:
        return f"tracking:{self.trip_id}"

    # ---- Lifecycle ----
    def set_active(self, active: bool) -> None:
        """Start when the owning view becomes active, stop when it goes away."""
        if active and not self.is_tracking:
            self.start()
        elif not active and self.is_tracking:
            self.stop()

    def start(self) -> None:
        if self.is_tracking:
            return
        if not self.watcher.is_supported:
            self.error = UNSUPPORTED_MESSAGE
            if not self._unsupported_reported:
                self._unsupported_reported = True
                self.toaster.toast("Location Tracking Unavailable", UNSUPPORTED_MESSAGE, "destructive")
            return

        self._generation += 1
        self.registry.register(self.registry_key, self._closer)
        self.is_tracking = True
        self.error = None
        self.toaster.toast(
            "Location Tracking Started",
            "Your location is now being tracked for this trip.",
        )
        self._handle = self.watcher.start(self._on_sample, self._on_error)
        if self.is_tracking and self.bridge is not None and self.user_id is not None:
            self._unsubscribe = self.bridge.subscribe(
                self.user_id, self.trip_id, self._on_realtime_deviation, loop=_running_loop()
            )
        log.info(f"[Tracker] trip {self.trip_id}: tracking started")

    def stop(self) -> None:
        if not self.is_tracking:
            return
        self._teardown()
        self.toaster.toast(
            "Location Tracking Stopped",
            "Your location is no longer being tracked for this trip.",
        )

    def _stop_silently(self) -> None:
        if self.is_tracking:
            self._teardown()

    def _teardown(self) -> None:
        self.is_tracking = False
        self.watcher.stop(self._handle)
        self._handle = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.registry.deregister(self.registry_key, self._closer)
        log.info(f"[Tracker] trip {self.trip_id}: tracking stopped")

    # ---- Position callbacks ----
    def _on_sample(self, sample: LocationSample) -> None:
        if not self.is_tracking:
            return
        log.debug(f"[Tracker] New location: {sample.latitude}, {sample.longitude} (accuracy: {sample.accuracy}m)")
        self.location = sample
        self.error = None
        task = asyncio.get_running_loop().create_task(self._report(sample, self._generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_error(self, error: PositionError) -> None:
        self.error = error.message
        if self.is_tracking:
            self._teardown()
        self.toaster.toast("Location Tracking Error", error.message, "destructive")

    async def _report(self, sample: LocationSample, generation: int) -> None:
        try:
            status = await self.reporter.report(self.trip_id, sample)
        except TrustLoopzError as e:
            log.error(f"[Tracker] Error sending location update: {e}")
            if self._is_live(generation):
                self.error = REPORT_FAILED_MESSAGE
                self.toaster.toast("Location Update Failed", REPORT_FAILED_MESSAGE, "destructive")
            return

        if not self._is_live(generation):
            log.debug(f"[Tracker] trip {self.trip_id}: discarding report result after stop")
            return

        was_deviated = self.deviation is not None and self.deviation.is_deviated
        self.deviation = evaluate(self.deviation, status)
        if self.deviation is not None and not was_deviated:
            await self.dispatcher.notify(
                "Route Deviation Alert",
                deviation_alert_body("You have left the planned route", self.deviation.distance_km),
            )

    def _is_live(self, generation: int) -> bool:
        return self.is_tracking and generation == self._generation

    # ---- Realtime ----
    def _on_realtime_deviation(self, event: DeviationEvent) -> None:
        if not self.is_tracking or event.trip_id != self.trip_id:
            return
        self.deviation = DeviationState(is_deviated=True, distance_km=event.distance_from_route_km)
        task = asyncio.get_running_loop().create_task(
            self.dispatcher.notify(
                "Route Deviation Alert",
                deviation_alert_body(event.message, event.distance_from_route_km),
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for reports and alerts already in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
