"""Booking status transitions, the deletion guard and pending-booking expiry."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import BookingDeletionError, InvalidStatusTransition
from .models import Booking, BookingStatus, RoleEnum

logger = logging.getLogger(__name__)

MANAGER_ROLES = {RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER}

# target status -> (allowed current statuses, manager only)
_TRANSITIONS = {
    BookingStatus.CONFIRMED: ({BookingStatus.PENDING}, True),
    BookingStatus.REJECTED: ({BookingStatus.PENDING}, True),
    BookingStatus.CANCELLED: ({BookingStatus.PENDING, BookingStatus.CONFIRMED}, False),
}


@dataclass(frozen=True)
class DeletionCheck:
    allowed: bool
    message: str = ""


def check_deletion(booking: Booking, now: datetime, cutoff_hours: int = 24) -> DeletionCheck:
    if booking.status != BookingStatus.CONFIRMED:
        return DeletionCheck(True)
    if now >= booking.start_time:
        return DeletionCheck(False, "Cannot delete booking after it has started")
    if now >= booking.start_time - timedelta(hours=cutoff_hours):
        return DeletionCheck(
            False, f"Cannot delete confirmed booking less than {cutoff_hours} hours before start time"
        )
    return DeletionCheck(True)


def can_delete(booking: Booking, now: datetime, cutoff_hours: int = 24) -> bool:
    return check_deletion(booking, now, cutoff_hours).allowed


def delete_booking(db: Session, booking: Booking, now: datetime, cutoff_hours: int = 24) -> None:
    check = check_deletion(booking, now, cutoff_hours)
    if not check.allowed:
        raise BookingDeletionError(check.message)
    db.delete(booking)
    db.flush()
    logger.info("Deleted %s booking %s", booking.status.value, booking.id)


def requires_manager(target: BookingStatus) -> bool:
    """Whether moving a booking to ``target`` is reserved for managers."""
    return _TRANSITIONS.get(target, (set(), True))[1]


def transition(booking: Booking, target: BookingStatus) -> Booking:
    allowed_from, _ = _TRANSITIONS.get(target, (set(), True))
    if booking.status not in allowed_from:
        raise InvalidStatusTransition(booking.status.value, target.value)
    logger.info("Booking %s: %s -> %s", booking.id, booking.status.value, target.value)
    booking.status = target
    return booking


def expire_pending_bookings(db: Session, now: datetime) -> List[Booking]:
    """Cancel every pending booking whose start time has already passed."""
    expired = db.scalars(
        select(Booking)
        .where(Booking.status == BookingStatus.PENDING, Booking.start_time < now)
        .order_by(Booking.start_time)
    ).all()
    for booking in expired:
        booking.status = BookingStatus.CANCELLED
    db.flush()
    if expired:
        logger.info("Expired %d pending booking(s)", len(expired))
    return list(expired)
