from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


CHECK_IN_STATUSES = ["ready", "not-ready", "delayed"]
NOT_CHECKED_IN = "not-checked-in"

CheckInState = Literal["ready", "not-ready", "delayed"]


class Permission(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class AccessLevel(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


# ---- Tracking ----
class LocationSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None
    captured_at: datetime


class RouteStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_on_route: bool = Field(alias="isOnRoute")
    distance_from_route_km: float = Field(default=0.0, ge=0, alias="distanceFromRoute")


class DeviationState(BaseModel):
    is_deviated: bool
    distance_km: float = 0.0

    @model_validator(mode="after")
    def check_distance(self):
        if self.is_deviated and self.distance_km < 0:
            raise ValueError("distance_km must be non-negative for a deviated state")
        return self


class DeviationEvent(BaseModel):
    """A server-pushed route deviation for the active trip."""
    trip_id: int
    message: str
    distance_from_route_km: float = Field(ge=0)


# ---- Check-ins ----
class CheckInStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    status: CheckInState
    notes: Optional[str] = None
    checked_in_at: Optional[datetime] = Field(default=None, alias="checkedInAt")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_verified: bool = Field(default=False, alias="locationVerified")


class LocationVerification(BaseModel):
    verified: bool = False
    message: Optional[str] = None


class CheckInResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    check_in: CheckInStatus
    all_ready: bool = False
    notification: Optional[str] = None
    location_status: Optional[LocationVerification] = None


class GroupMember(BaseModel):
    user_id: int
    display_name: str


class RosterEntry(BaseModel):
    user_id: int
    display_name: str
    status: str
    notes: Optional[str] = None
    checked_in_at: Optional[str] = None


class ReadinessSummary(BaseModel):
    own_status: Optional[str] = None
    ready_count: int
    total: int
    all_ready: bool


# ---- Notifications ----
class NotificationPreference(BaseModel):
    enabled: bool = False
    permission: Permission = Permission.DEFAULT
