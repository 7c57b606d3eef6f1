"""Pydantic schemas shared across the services."""
from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import BlackoutType, BookingStatus

SLOT_STEP_MINUTES = 30
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive facility-local wall-clock times."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def omit_not_null(value):
    # Partial updates: a field may be left out, but an explicit null would blank a required column.
    if value is None:
        raise ValueError("must not be null; omit the field to keep its current value")
    return value


class OperatingDay(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool
    start: str = Field(..., pattern=HHMM_PATTERN)
    end: str = Field(..., pattern=HHMM_PATTERN)

    @model_validator(mode="after")
    def check_window(self) -> "OperatingDay":
        # Zero-padded HH:MM strings order the same way as the times they encode.
        if self.enabled and self.start >= self.end:
            raise ValueError("Operating hours must start before they end")
        return self


def _weekday(start: str, end: str, enabled: bool = True) -> OperatingDay:
    return OperatingDay(enabled=enabled, start=start, end=end)


class OperatingHours(BaseModel):
    model_config = ConfigDict(extra="forbid")

    monday: OperatingDay = Field(default_factory=lambda: _weekday("08:00", "18:00"))
    tuesday: OperatingDay = Field(default_factory=lambda: _weekday("08:00", "18:00"))
    wednesday: OperatingDay = Field(default_factory=lambda: _weekday("08:00", "18:00"))
    thursday: OperatingDay = Field(default_factory=lambda: _weekday("08:00", "18:00"))
    friday: OperatingDay = Field(default_factory=lambda: _weekday("08:00", "18:00"))
    saturday: OperatingDay = Field(default_factory=lambda: _weekday("09:00", "17:00", enabled=False))
    sunday: OperatingDay = Field(default_factory=lambda: _weekday("09:00", "17:00", enabled=False))

    def for_date(self, target: date) -> OperatingDay:
        return getattr(self, WEEKDAYS[target.weekday()])


class AvailabilitySettings(BaseModel):
    """Booking rules for a room; the defaults are what a new room starts with."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    operating_hours: OperatingHours = Field(default_factory=OperatingHours)
    min_booking_duration: int = Field(30, ge=30, le=480)
    max_booking_duration: int = Field(480, ge=30, le=1440)
    buffer_time: int = Field(15, ge=0, le=60)
    advance_booking_days: int = Field(30, ge=1, le=365)
    same_day_booking_enabled: bool = True
    max_bookings_per_user_per_day: int = Field(1, ge=1)
    max_bookings_per_user_per_week: int = Field(5, ge=1)

    @field_validator("min_booking_duration", "max_booking_duration")
    @classmethod
    def check_slot_grid(cls, value: int) -> int:
        if value % SLOT_STEP_MINUTES:
            raise ValueError(f"Durations must be multiples of {SLOT_STEP_MINUTES} minutes")
        return value

    @model_validator(mode="after")
    def check_duration_bounds(self) -> "AvailabilitySettings":
        if self.min_booking_duration > self.max_booking_duration:
            raise ValueError("Minimum booking duration cannot exceed the maximum")
        return self


class AvailabilityRead(AvailabilitySettings):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    room_id: int
    updated_at: Optional[datetime] = None


class RoomBase(BaseModel):
    name: str = Field(..., max_length=100)
    capacity: int = Field(..., ge=1)
    equipment: List[str] = Field(default_factory=list)
    location: str
    is_active: bool = True


class RoomCreate(RoomBase):
    model_config = ConfigDict(extra="forbid")


class RoomUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    capacity: Optional[int] = Field(None, ge=1)
    equipment: Optional[List[str]] = None
    location: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("capacity", "equipment", "location", "is_active", mode="before")
    @classmethod
    def reject_null(cls, value):
        return omit_not_null(value)


class RoomRead(RoomBase):
    id: int

    model_config = {"from_attributes": True}


class BlackoutBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    blackout_type: BlackoutType = BlackoutType.MAINTENANCE
    is_recurring: bool = False
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class BlackoutCreate(BlackoutBase):
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_window(self) -> "BlackoutCreate":
        if self.end_time <= self.start_time:
            raise ValueError("Blackout must end after it starts")
        return self


class BlackoutUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    blackout_type: Optional[BlackoutType] = None
    is_recurring: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator(
        "title", "start_time", "end_time", "blackout_type", "is_recurring", "is_active", mode="before"
    )
    @classmethod
    def reject_null(cls, value):
        return omit_not_null(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class BlackoutRead(BlackoutBase):
    id: int
    room_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    room_id: int
    start_time: datetime
    end_time: datetime
    title: Optional[str] = Field(None, max_length=200)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class BookingStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: BookingStatus


class BookingRead(BaseModel):
    id: int
    room_id: int
    user_id: int
    title: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingRejection(BaseModel):
    reason: str
    detail: Optional[str] = None
    message: str


class ExpiredBookings(BaseModel):
    expired_count: int
    bookings: List[BookingRead]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotRestrictions(_CamelModel):
    min_duration: int
    max_duration: int
    buffer_time: int
    advance_booking_days: int
    same_day_booking_enabled: bool

    @classmethod
    def from_settings(cls, rules: AvailabilitySettings) -> "SlotRestrictions":
        return cls(
            min_duration=rules.min_booking_duration,
            max_duration=rules.max_booking_duration,
            buffer_time=rules.buffer_time,
            advance_booking_days=rules.advance_booking_days,
            same_day_booking_enabled=rules.same_day_booking_enabled,
        )


class SlotAvailabilityResult(_CamelModel):
    date: dt.date
    operating_hours: Optional[OperatingDay] = None
    restrictions: Optional[SlotRestrictions] = None
    start_options: List[str] = Field(default_factory=list)
    end_options_by_start: Dict[str, List[str]] = Field(default_factory=dict)
    unavailable_reasons: Dict[str, Optional[str]] = Field(default_factory=dict)
    error: Optional[str] = None


CalendarRestriction = Literal["closed", "blackout", "beyond-window", "past", "none"]


class CalendarDay(BaseModel):
    date: dt.date
    restriction: CalendarRestriction
    message: str = ""


class CalendarMonth(BaseModel):
    room_id: int
    year: int
    month: int
    days: List[CalendarDay]
