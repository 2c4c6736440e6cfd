"""Trip check-in: the viewer's own readiness plus the group's aggregate status."""
from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

import pytz
from pydantic import ValidationError

from ..api.client import TripApiClient
from ..config import get_settings
from ..exceptions import AccessDeniedError, MalformedPayloadError, TrustLoopzError
from ..messaging.toast import Toaster
from ..models import (
    CHECK_IN_STATUSES,
    NOT_CHECKED_IN,
    AccessLevel,
    CheckInResult,
    CheckInStatus,
    GroupMember,
    LocationVerification,
    ReadinessSummary,
    RosterEntry,
)
from .scheduler import Cancel, PollScheduler

settings = get_settings()
log = logging.getLogger(__name__)

PLANNING = "planning"

TripRefresh = Callable[[], Any] | Callable[[], Awaitable[Any]]


def latest_by_user(statuses: Iterable[CheckInStatus]) -> dict[int, CheckInStatus]:
    """Collapse a status feed to one entry per user; later entries win."""
    latest: dict[int, CheckInStatus] = {}
    for entry in statuses:
        latest[entry.user_id] = entry
    return latest


def compute_group_readiness(statuses: Iterable[CheckInStatus], member_count: int) -> bool:
    """True when every one of ``member_count`` members has checked in as ready."""
    latest = latest_by_user(statuses)
    return (
        member_count > 0
        and len(latest) == member_count
        and all(entry.status == "ready" for entry in latest.values())
    )


def parse_status_feed(body: Any) -> list[CheckInStatus]:
    """Accept either a bare list or ``{"checkInStatuses": [...]}``.

    Entries that fail validation are logged and skipped.
    """
    if isinstance(body, list):
        raw_entries = body
    elif isinstance(body, dict):
        raw_entries = body.get("checkInStatuses", [])
    else:
        raise MalformedPayloadError(f"unexpected check-in status feed: {body!r}")

    if not isinstance(raw_entries, list):
        raise MalformedPayloadError(f"checkInStatuses is not a list: {raw_entries!r}")

    statuses = []
    for raw in raw_entries:
        try:
            statuses.append(CheckInStatus.model_validate(raw))
        except ValidationError as e:
            log.warning(f"[CheckIn] dropping malformed status entry {raw!r}: {e}")
    return statuses


def format_checked_in_at(dt: datetime | None, user_timezone: str | None) -> str | None:
    if dt is None:
        return None
    if user_timezone:
        try:
            tz = pytz.timezone(user_timezone)
            if dt.tzinfo is None:
                dt = pytz.utc.localize(dt)
            dt = dt.astimezone(tz)
        except pytz.UnknownTimeZoneError:
            log.warning(f"Failed to convert to timezone {user_timezone}")
    return dt.strftime("%b %d, %Y at %I:%M %p")


class CheckInCoordinator:
    """Check-in state for one trip as seen by one user.

    ``own`` is None until the viewer has checked in (NotCheckedIn); afterwards
    it holds their latest CheckInStatus and resubmissions update it in place.
    Local state only changes after the server confirms a submission.
    """

    def __init__(
        self,
        client: TripApiClient,
        trip_id: int,
        user_id: int,
        toaster: Toaster,
        members: list[GroupMember] | None = None,
        access_level: AccessLevel = AccessLevel.MEMBER,
        trip_status: str = PLANNING,
        on_trip_confirmed: TripRefresh | None = None,
        scheduler: PollScheduler | None = None,
        timezone: str | None = None,
    ) -> None:
        self.client = client
        self.trip_id = trip_id
        self.user_id = user_id
        self.toaster = toaster
        self.members = list(members or [])
        self.access_level = access_level
        self.trip_status = trip_status
        self.on_trip_confirmed = on_trip_confirmed
        self.scheduler = scheduler
        self.timezone = timezone or settings.TIMEZONE

        self.own: CheckInStatus | None = None
        self.statuses: dict[int, CheckInStatus] = {}
        self.trip_info: dict | None = None
        self.all_ready = False
        self.submitting = False
        self._confirmed = False
        self._announced = False
        self._cancel_poll: Cancel | None = None

    @property
    def is_checked_in(self) -> bool:
        return self.own is not None

    @property
    def member_count(self) -> int:
        return len(self.members)

    # ---- Loading ----
    async def load(self) -> None:
        """Fetch the viewer's own check-in and the group feed."""
        try:
            body = await self.client.get_user_check_in(self.trip_id, self.user_id)
        except TrustLoopzError as e:
            log.warning(f"[CheckIn] trip {self.trip_id}: could not load own check-in: {e}")
        else:
            if body is not None:
                try:
                    self.own = CheckInStatus.model_validate(body)
                except ValidationError as e:
                    log.warning(f"[CheckIn] trip {self.trip_id}: malformed own check-in {body!r}: {e}")
        await self.refresh()

    async def refresh(self) -> bool:
        """Re-fetch the status feed and re-evaluate readiness. Never raises."""
        try:
            body = await self.client.get_check_in_status(self.trip_id)
            statuses = parse_status_feed(body)
        except TrustLoopzError as e:
            log.warning(f"[CheckIn] trip {self.trip_id}: status refresh failed: {e}")
            return self.all_ready

        if isinstance(body, dict):
            self.trip_info = body.get("tripInfo") or body.get("scheduleInfo")
        self.statuses = latest_by_user(statuses)
        self.all_ready = compute_group_readiness(self.statuses.values(), self.member_count)
        if self.all_ready:
            await self._confirm_trip()
        return self.all_ready

    # ---- Polling ----
    def start_polling(self, scheduler: PollScheduler | None = None, seconds: float | None = None) -> None:
        scheduler = scheduler or self.scheduler
        if scheduler is None:
            raise ValueError("a scheduler is required to poll check-in status")
        self.stop_polling()
        self._cancel_poll = scheduler.every(
            settings.CHECKIN_POLL_SECONDS if seconds is None else seconds,
            self.refresh,
            f"checkin-status-{self.trip_id}",
        )
        log.info(f"[CheckIn] polling trip {self.trip_id}")

    def stop_polling(self) -> None:
        if self._cancel_poll is not None:
            self._cancel_poll()
            self._cancel_poll = None

    # ---- Submitting ----
    async def submit(
        self,
        status: str,
        notes: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> CheckInResult | None:
        """Post the viewer's status. Returns None (state untouched) on failure."""
        if status not in CHECK_IN_STATUSES:
            raise ValueError(f"Invalid check-in status. Must be one of: {', '.join(CHECK_IN_STATUSES)}")

        payload: dict[str, Any] = {"status": status}
        if notes is not None:
            payload["notes"] = notes
        if latitude is not None and longitude is not None:
            payload["latitude"] = latitude
            payload["longitude"] = longitude

        was_planning = self.trip_status == PLANNING
        self.submitting = True
        try:
            body = await self.client.post_check_in(self.trip_id, payload)
        except TrustLoopzError as e:
            message = getattr(e, "message", None) or str(e)
            log.warning(f"[CheckIn] trip {self.trip_id}: submission failed: {message}")
            self.toaster.toast("Error updating check-in", message, "destructive")
            return None
        finally:
            self.submitting = False

        result = self._parse_result(body, payload)
        self.own = result.check_in
        self.statuses[self.user_id] = result.check_in
        log.info(f"[CheckIn] trip {self.trip_id}: user {self.user_id} is {result.check_in.status}")

        if result.all_ready and was_planning and not self._announced:
            self._announced = True
            await self._confirm_trip()
            self.toaster.toast(
                "Trip confirmed!",
                "All members are ready. The trip status has been updated to confirmed.",
            )
        else:
            self._toast_updated(result.location_status)

        await self.refresh()
        return result

    def _parse_result(self, body: Any, payload: dict) -> CheckInResult:
        if not isinstance(body, dict):
            body = {}
        raw_check_in = body.get("checkIn", body)
        try:
            check_in = CheckInStatus.model_validate(raw_check_in)
        except ValidationError:
            log.warning(f"[CheckIn] trip {self.trip_id}: malformed check-in response; using submitted values")
            check_in = CheckInStatus(
                user_id=self.user_id,
                status=payload["status"],
                notes=payload.get("notes"),
                latitude=payload.get("latitude"),
                longitude=payload.get("longitude"),
            )

        location_status = None
        if isinstance(body.get("locationStatus"), dict):
            try:
                location_status = LocationVerification.model_validate(body["locationStatus"])
            except ValidationError:
                log.warning(f"[CheckIn] trip {self.trip_id}: ignoring malformed locationStatus")

        return CheckInResult(
            check_in=check_in,
            all_ready=bool(body.get("allReady", False)),
            notification=body.get("notification"),
            location_status=location_status,
        )

    def _toast_updated(self, location_status: LocationVerification | None) -> None:
        if location_status is not None and location_status.verified:
            self.toaster.toast(
                "Check-in successful",
                "Your location has been verified and check-in is complete.",
            )
        elif location_status is not None and location_status.message:
            self.toaster.toast("Check-in recorded with warning", location_status.message, "destructive")
        else:
            self.toaster.toast(
                "Check-in updated",
                "Your check-in status has been updated successfully.",
            )

    async def _confirm_trip(self) -> None:
        if self._confirmed or self.trip_status != PLANNING:
            return
        self._confirmed = True
        log.info(f"[CheckIn] trip {self.trip_id}: all members ready, refreshing trip status")
        if self.on_trip_confirmed is None:
            return
        try:
            refreshed = self.on_trip_confirmed()
            if inspect.isawaitable(refreshed):
                refreshed = await refreshed
        except Exception as e:
            log.error(f"[CheckIn] trip {self.trip_id}: trip status refresh failed: {e}")
            return
        if isinstance(refreshed, str):
            self.trip_status = refreshed

    # ---- Views ----
    def roster(self) -> list[RosterEntry]:
        """Every member's status, including those who have not checked in. Owners only."""
        if self.access_level != AccessLevel.OWNER:
            raise AccessDeniedError("Only the trip owner can see every member's check-in")
        entries = []
        for member in self.members:
            existing = self.statuses.get(member.user_id)
            if existing is None:
                entries.append(RosterEntry(
                    user_id=member.user_id,
                    display_name=member.display_name or f"User {member.user_id}",
                    status=NOT_CHECKED_IN,
                ))
                continue
            entries.append(RosterEntry(
                user_id=member.user_id,
                display_name=member.display_name or f"User {member.user_id}",
                status=existing.status,
                notes=existing.notes,
                checked_in_at=format_checked_in_at(existing.checked_in_at, self.timezone),
            ))
        return entries

    def summary(self) -> ReadinessSummary:
        """What a regular member sees: their own status and an aggregate count."""
        ready = sum(1 for entry in self.statuses.values() if entry.status == "ready")
        return ReadinessSummary(
            own_status=self.own.status if self.own else None,
            ready_count=ready,
            total=self.member_count,
            all_ready=self.all_ready,
        )
