"""
Domain models for events, positions, signups and dashboard issues.
"""

import datetime as dt
from enum import StrEnum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from volunteer_ops.geo import GeoPoint


def _assume_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


# shift times without an offset are read as UTC so they stay comparable
UtcDatetime = Annotated[dt.datetime, AfterValidator(_assume_utc)]


class Event(BaseModel):
    id: str
    name: str
    date: dt.date
    time: dt.time
    location: str = ""
    owner_id: str | None = None  # organizer account


class Position(BaseModel):
    id: str
    event_id: str
    name: str
    needed: int = Field(gt=0)
    filled: int = Field(default=0, ge=0)  # may exceed needed if over-assigned
    description: str | None = None
    skill_level: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class Signup(BaseModel):
    id: str
    position_id: str
    volunteer_name: str
    email: str | None = None
    phone_number: str | None = None
    start_time: UtcDatetime
    end_time: UtcDatetime
    arrived: bool = False  # source of truth for check-in


class SignupCreate(BaseModel):
    position_id: str
    volunteer_name: str
    email: str | None = None
    phone_number: str | None = None
    start_time: UtcDatetime
    end_time: UtcDatetime


class EventSummary(BaseModel):
    id: str
    name: str
    date: dt.date
    time: dt.time
    location: str = ""


def _coordinates(latitude: float | None, longitude: float | None) -> GeoPoint | None:
    if latitude is None or longitude is None:
        return None
    return GeoPoint(latitude, longitude)


class PositionDetail(BaseModel):
    """A position joined with its parent event, as read by the check-in flow."""

    id: str
    name: str
    description: str | None = None
    skill_level: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    event: EventSummary

    @property
    def location(self) -> GeoPoint | None:
        return _coordinates(self.latitude, self.longitude)


class PositionStatus(BaseModel):
    """A position as shown on the dashboard map and staffing summary."""

    id: str
    name: str
    needed: int
    filled: int
    latitude: float | None = None
    longitude: float | None = None
    event: EventSummary

    @property
    def understaffed(self) -> bool:
        return self.filled < self.needed

    @property
    def location(self) -> GeoPoint | None:
        return _coordinates(self.latitude, self.longitude)


class EligibleVolunteer(BaseModel):
    id: str
    volunteer_name: str
    start_time: UtcDatetime
    end_time: UtcDatetime


class IssueType(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class PositionRef(BaseModel):
    id: str
    name: str
    event_id: str
    event_name: str


class Issue(BaseModel):
    id: str
    type: IssueType
    message: str
    timestamp: dt.datetime
    position: PositionRef | None = None


class SignupNotification(BaseModel):
    """Pushed on the realtime channel whenever a signup row is inserted."""

    signup_id: str
    position_id: str
    volunteer_name: str
