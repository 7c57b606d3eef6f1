"""Accept/reject decisions for a proposed booking."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional

from .slots import SlotCalculator, date_restriction, end_rejection

logger = logging.getLogger(__name__)


class ViolationKind(str, Enum):
    DATE_OUT_OF_RANGE = "date_out_of_range"
    START_UNAVAILABLE = "start_unavailable"
    END_UNAVAILABLE = "end_unavailable"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    WEEKLY_LIMIT_EXCEEDED = "weekly_limit_exceeded"


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: Optional[ViolationKind] = None
    detail: Optional[str] = None
    message: str = ""

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: ViolationKind, message: str, detail: Optional[str] = None) -> "ValidationResult":
        return cls(accepted=False, reason=reason, detail=detail, message=message)


class BookingValidator:
    """Runs the date, slot and per-user checks in order; the first failure wins.

    Slot checks go through the calculator, so duration, blackout, buffer and
    booking conflicts are all covered by asking whether the requested start and
    end are among the offered options.
    """

    def __init__(self, calculator: SlotCalculator) -> None:
        self.calculator = calculator

    def validate(
        self,
        room_id: int,
        user_id: int,
        target: date,
        start: str,
        end: str,
        now: datetime,
    ) -> ValidationResult:
        rules = self.calculator.availability.get(room_id)

        error = date_restriction(rules, target, now.date())
        if error:
            return ValidationResult.reject(ViolationKind.DATE_OUT_OF_RANGE, error)

        slots = self.calculator.compute_with_rules(room_id, rules, target, now)
        if start not in slots.start_options:
            return ValidationResult.reject(
                ViolationKind.START_UNAVAILABLE,
                slots.error or f"Start time {start} is not available",
                detail=slots.unavailable_reasons.get(start),
            )
        if end not in slots.end_options_by_start.get(start, []):
            blackouts, bookings = self.calculator.load(room_id, target, rules)
            return ValidationResult.reject(
                ViolationKind.END_UNAVAILABLE,
                f"End time {end} is not available for a {start} start",
                detail=end_rejection(rules, blackouts, bookings, target, start, end),
            )

        bookings = self.calculator.bookings
        day_start = datetime.combine(target, time.min)
        daily = bookings.count_for_user(room_id, user_id, day_start, day_start + timedelta(days=1))
        if daily >= rules.max_bookings_per_user_per_day:
            return ValidationResult.reject(
                ViolationKind.DAILY_LIMIT_EXCEEDED,
                f"You can hold at most {rules.max_bookings_per_user_per_day} booking(s) per day in this room",
            )
        week_start = day_start - timedelta(days=target.weekday())
        weekly = bookings.count_for_user(room_id, user_id, week_start, week_start + timedelta(days=7))
        if weekly >= rules.max_bookings_per_user_per_week:
            return ValidationResult.reject(
                ViolationKind.WEEKLY_LIMIT_EXCEEDED,
                f"You can hold at most {rules.max_bookings_per_user_per_week} booking(s) per week in this room",
            )
        return ValidationResult.accept()

    def validate_times(
        self,
        room_id: int,
        user_id: int,
        start_time: datetime,
        end_time: datetime,
        now: datetime,
    ) -> ValidationResult:
        """Validate absolute timestamps, as received by the booking endpoint."""
        if start_time.second or start_time.microsecond:
            return ValidationResult.reject(ViolationKind.START_UNAVAILABLE, "Start time must fall on the slot grid")
        if end_time.date() != start_time.date() or end_time.second or end_time.microsecond:
            return ValidationResult.reject(
                ViolationKind.END_UNAVAILABLE, "Bookings must end on the slot grid of the day they start"
            )
        result = self.validate(
            room_id,
            user_id,
            start_time.date(),
            start_time.strftime("%H:%M"),
            end_time.strftime("%H:%M"),
            now,
        )
        if not result.accepted:
            logger.info(
                "Rejected booking for room %s by user %s: %s (%s)",
                room_id,
                user_id,
                result.reason.value,
                result.detail,
            )
        return result
