"""Date-level restrictions for a month view of a room's booking calendar."""
from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

from .schemas import AvailabilitySettings, BlackoutRead, CalendarDay
from .slots import build_blocks, parse_hhmm


def month_days(year: int, month: int) -> List[date]:
    _, last = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, last + 1)]


def _covering_blackout(
    target: date, open_at: int, close_at: int, blackouts: List[BlackoutRead]
) -> Optional[BlackoutRead]:
    """Return a blackout on ``target`` if the union of blackouts spans the whole operating window."""
    blocks = sorted(build_blocks(target, blackouts, [], 0), key=lambda block: block.start)
    reached = open_at
    for block in blocks:
        if block.start > reached:
            break
        reached = max(reached, block.end)
        if reached >= close_at:
            break
    if reached < close_at:
        return None
    day_start = datetime.combine(target, time.min)
    day_end = day_start + timedelta(days=1)
    return next(
        (blackout for blackout in blackouts if blackout.start_time < day_end and blackout.end_time > day_start),
        None,
    )


def month_restrictions(
    rules: AvailabilitySettings,
    blackouts: Iterable[BlackoutRead],
    year: int,
    month: int,
    today: date,
) -> List[CalendarDay]:
    active = [blackout for blackout in blackouts if blackout.is_active]
    last_bookable = today + timedelta(days=rules.advance_booking_days)
    days: List[CalendarDay] = []
    for target in month_days(year, month):
        hours = rules.operating_hours.for_date(target)
        if target < today:
            days.append(CalendarDay(date=target, restriction="past", message="Past dates are not available for booking"))
            continue
        if not hours.enabled:
            days.append(
                CalendarDay(date=target, restriction="closed", message=f"Room closed on {target.strftime('%A')}s")
            )
            continue
        blackout = _covering_blackout(target, parse_hhmm(hours.start), parse_hhmm(hours.end), active)
        if blackout is not None:
            days.append(CalendarDay(date=target, restriction="blackout", message=blackout.title))
            continue
        if target == today and not rules.same_day_booking_enabled:
            days.append(
                CalendarDay(
                    date=target,
                    restriction="beyond-window",
                    message="Same-day booking is not enabled for this room",
                )
            )
            continue
        if target > last_bookable:
            days.append(
                CalendarDay(
                    date=target,
                    restriction="beyond-window",
                    message=f"Bookings only allowed up to {rules.advance_booking_days} days in advance",
                )
            )
            continue
        days.append(CalendarDay(date=target, restriction="none"))
    return days
