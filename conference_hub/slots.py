"""Slot calculation for one room on one date.

All arithmetic happens in whole minutes measured from midnight of the target
date, so an interval from another day simply lands at negative minutes or past
1440 and needs no special casing.

Produces, per date:
  startOptions        grid times a booking may start at
  endOptionsByStart   for each start, every grid time the booking may end at
  unavailableReasons  for each rejected grid time, the most telling reason
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional

from .errors import RoomNotFoundError
from .models import OCCUPYING_STATUSES
from .schemas import (
    SLOT_STEP_MINUTES,
    WEEKDAYS,
    AvailabilitySettings,
    BlackoutRead,
    BookingRead,
    SlotAvailabilityResult,
    SlotRestrictions,
)
from .stores import AvailabilityStore, BlackoutStore, BookingStore

logger = logging.getLogger(__name__)

REASON_EXISTING_BOOKING = "conflict:existing_booking"
REASON_BLACKOUT = "conflict:blackout"
REASON_BUFFER = "conflict:buffer"
REASON_MAX_DURATION = "rule:max_duration"
REASON_MIN_DURATION = "rule:min_duration"
REASON_PAST_TIME = "rule:past_time"

# Lower wins when several reasons apply to the same time.
_REASON_PRIORITY = {
    REASON_BLACKOUT: 0,
    REASON_EXISTING_BOOKING: 1,
    REASON_BUFFER: 2,
    REASON_PAST_TIME: 3,
    REASON_MIN_DURATION: 4,
    REASON_MAX_DURATION: 5,
}


def parse_hhmm(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def most_specific(reasons: Iterable[str]) -> Optional[str]:
    return min(reasons, key=_REASON_PRIORITY.__getitem__, default=None)


def _day_start(target: date) -> datetime:
    return datetime.combine(target, time.min)


def _minutes(day_start: datetime, moment: datetime, round_up: bool = False) -> int:
    delta = (moment - day_start).total_seconds() / 60
    return math.ceil(delta) if round_up else math.floor(delta)


@dataclass(frozen=True)
class Block:
    """A half-open minute range ``[start, end)`` during which nothing may be booked."""

    start: int
    end: int
    reason: str

    def covers(self, minute: int) -> bool:
        return self.start <= minute < self.end


def build_blocks(
    target: date,
    blackouts: Iterable[BlackoutRead],
    bookings: Iterable[BookingRead],
    buffer_time: int,
) -> List[Block]:
    day_start = _day_start(target)
    blocks: List[Block] = []
    for blackout in blackouts:
        if not blackout.is_active:
            continue
        blocks.append(
            Block(
                _minutes(day_start, blackout.start_time),
                _minutes(day_start, blackout.end_time, round_up=True),
                REASON_BLACKOUT,
            )
        )
    for booking in bookings:
        if booking.status not in OCCUPYING_STATUSES:
            continue
        start = _minutes(day_start, booking.start_time)
        end = _minutes(day_start, booking.end_time, round_up=True)
        blocks.append(Block(start, end, REASON_EXISTING_BOOKING))
        if buffer_time > 0:
            blocks.append(Block(start - buffer_time, start, REASON_BUFFER))
            blocks.append(Block(end, end + buffer_time, REASON_BUFFER))
    return blocks


def date_restriction(rules: AvailabilitySettings, target: date, today: date) -> Optional[str]:
    """Return why ``target`` cannot be booked at all, or ``None`` when it is in range."""
    if target < today:
        return "Cannot book dates in the past"
    if target == today and not rules.same_day_booking_enabled:
        return "Same-day booking is not enabled for this room"
    if target > today + timedelta(days=rules.advance_booking_days):
        return f"Bookings can only be made up to {rules.advance_booking_days} days in advance"
    return None


def compute_slots(
    rules: AvailabilitySettings,
    blackouts: Iterable[BlackoutRead],
    bookings: Iterable[BookingRead],
    target: date,
    now: datetime,
    step: int = SLOT_STEP_MINUTES,
) -> SlotAvailabilityResult:
    day = rules.operating_hours.for_date(target)
    restrictions = SlotRestrictions.from_settings(rules)
    result = SlotAvailabilityResult(date=target, operating_hours=day, restrictions=restrictions)

    error = date_restriction(rules, target, now.date())
    if error:
        result.error = error
        return result
    if not day.enabled:
        result.error = f"Room is closed on {WEEKDAYS[target.weekday()]}s"
        return result

    open_at = parse_hhmm(day.start)
    close_at = parse_hhmm(day.end)
    first = math.ceil(open_at / step) * step
    blocks = build_blocks(target, blackouts, bookings, rules.buffer_time)
    earliest = _minutes(_day_start(target), now, round_up=True) if target == now.date() else None

    start_options: List[str] = []
    end_options: Dict[str, List[str]] = {}
    reasons: Dict[str, Optional[str]] = {}

    for start in range(first, close_at, step):
        label = format_hhmm(start)
        found = [block.reason for block in blocks if block.covers(start)]
        if earliest is not None and start < earliest:
            found.append(REASON_PAST_TIME)
        if start + rules.min_booking_duration > close_at:
            found.append(REASON_MIN_DURATION)
        if found:
            reasons[label] = most_specific(found)
            continue

        # The start is clear, so the first block beginning after it caps the booking.
        limit = min(
            [close_at, start + rules.max_booking_duration]
            + [block.start for block in blocks if block.start > start]
        )
        ends = [
            format_hhmm(end)
            for end in range(start + step, limit + 1, step)
            if end - start >= rules.min_booking_duration
        ]
        if not ends:
            reasons[label] = REASON_MIN_DURATION
            continue
        start_options.append(label)
        end_options[label] = ends

    result.start_options = start_options
    result.end_options_by_start = end_options
    result.unavailable_reasons = reasons
    return result


def end_rejection(
    rules: AvailabilitySettings,
    blackouts: Iterable[BlackoutRead],
    bookings: Iterable[BookingRead],
    target: date,
    start: str,
    end: str,
) -> Optional[str]:
    """Explain why ``end`` is not offered for ``start``.

    Returns ``None`` when no reason code applies, e.g. an end past closing time
    or off the slot grid.
    """
    begin, finish = parse_hhmm(start), parse_hhmm(end)
    length = finish - begin
    if length < rules.min_booking_duration:
        return REASON_MIN_DURATION
    if length > rules.max_booking_duration:
        return REASON_MAX_DURATION
    blocks = build_blocks(target, blackouts, bookings, rules.buffer_time)
    return most_specific(block.reason for block in blocks if block.start < finish and begin < block.end)


@dataclass(frozen=True)
class SlotInputs:
    """The parts of a slot query that change only when rules or blackouts do.

    Bookings and the clock are left out, so these can be cached per room and
    date and invalidated by the rooms service alone.
    """

    rules: AvailabilitySettings
    blackouts: List[BlackoutRead]


class SlotCalculator:
    """Loads a room's rules, blackouts and bookings and runs :func:`compute_slots`."""

    def __init__(
        self,
        availability: AvailabilityStore,
        blackouts: BlackoutStore,
        bookings: BookingStore,
        step: int = SLOT_STEP_MINUTES,
    ) -> None:
        self.availability = availability
        self.blackouts = blackouts
        self.bookings = bookings
        self.step = step

    def load_blackouts(self, room_id: int, target: date) -> List[BlackoutRead]:
        day_start = _day_start(target)
        return self.blackouts.list_between(room_id, day_start, day_start + timedelta(days=1))

    def load_bookings(self, room_id: int, target: date, rules: AvailabilitySettings) -> List[BookingRead]:
        day_start = _day_start(target)
        padding = timedelta(minutes=rules.buffer_time)
        return self.bookings.occupying_between(
            room_id, day_start - padding, day_start + timedelta(days=1) + padding
        )

    def load(self, room_id: int, target: date, rules: AvailabilitySettings) -> tuple[List[BlackoutRead], List[BookingRead]]:
        return self.load_blackouts(room_id, target), self.load_bookings(room_id, target, rules)

    def load_inputs(self, room_id: int, target: date) -> SlotInputs:
        """Rules and blackouts for ``target``. Raises :class:`RoomNotFoundError`."""
        try:
            rules = self.availability.get(room_id)
        except RoomNotFoundError:
            logger.warning("Slot lookup for unknown room %s", room_id)
            raise
        return SlotInputs(rules=rules, blackouts=self.load_blackouts(room_id, target))

    def compute(self, room_id: int, target: date, now: datetime) -> SlotAvailabilityResult:
        try:
            rules = self.availability.get(room_id)
        except RoomNotFoundError:
            logger.warning("Slot lookup for unknown room %s", room_id)
            return SlotAvailabilityResult(date=target, error="Room not found")
        return self.compute_with_rules(room_id, rules, target, now)

    def compute_with_rules(
        self, room_id: int, rules: AvailabilitySettings, target: date, now: datetime
    ) -> SlotAvailabilityResult:
        if date_restriction(rules, target, now.date()):
            return compute_slots(rules, [], [], target, now, self.step)
        blackouts, bookings = self.load(room_id, target, rules)
        return compute_slots(rules, blackouts, bookings, target, now, self.step)

    def compute_from_inputs(
        self, room_id: int, inputs: SlotInputs, target: date, now: datetime
    ) -> SlotAvailabilityResult:
        """Run the engine on previously loaded inputs, reading bookings as of now."""
        if date_restriction(inputs.rules, target, now.date()):
            return compute_slots(inputs.rules, [], [], target, now, self.step)
        bookings = self.load_bookings(room_id, target, inputs.rules)
        return compute_slots(inputs.rules, inputs.blackouts, bookings, target, now, self.step)
