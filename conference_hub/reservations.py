"""Atomic validate-then-insert for new bookings.

The slots a client was shown are advisory. The authoritative check runs here,
inside the transaction that inserts the booking, while a per-room lock is held:
a process-local lock serializes requests within one worker and a row lock on
the room's availability rules serializes workers sharing a database. A final
overlap query after the insert catches anything that slipped past both.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import BookingRejected, ConferenceHubError, SlotUnavailableError
from .models import Booking, BookingStatus
from .slots import SlotCalculator
from .stores import SqlAvailabilityStore, SqlBlackoutStore, SqlBookingStore
from .validator import BookingValidator

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_room_locks: Dict[int, threading.Lock] = {}


@contextmanager
def room_lock(room_id: int) -> Iterator[None]:
    with _registry_lock:
        lock = _room_locks.setdefault(room_id, threading.Lock())
    with lock:
        yield


def build_validator(db: Session) -> BookingValidator:
    calculator = SlotCalculator(SqlAvailabilityStore(db), SqlBlackoutStore(db), SqlBookingStore(db))
    return BookingValidator(calculator)


def reserve(
    db: Session,
    room_id: int,
    user_id: int,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
    title: Optional[str] = None,
) -> Booking:
    """Validate and insert a pending booking, or raise.

    Raises :class:`BookingRejected` for rule violations and
    :class:`SlotUnavailableError` when a concurrent booking won the slot.
    """
    with room_lock(room_id):
        try:
            availability = SqlAvailabilityStore(db)
            availability.lock(room_id)
            validator = build_validator(db)
            result = validator.validate_times(room_id, user_id, start_time, end_time, now)
            if not result.accepted:
                raise BookingRejected(result)

            booking = Booking(
                room_id=room_id,
                user_id=user_id,
                title=title,
                start_time=start_time,
                end_time=end_time,
                status=BookingStatus.PENDING,
            )
            db.add(booking)
            db.flush()

            padding = timedelta(minutes=availability.get(room_id).buffer_time)
            competing = SqlBookingStore(db).occupying_between(
                room_id, start_time - padding, end_time + padding, exclude_id=booking.id
            )
            if competing:
                logger.warning(
                    "Room %s %s-%s taken concurrently by booking %s", room_id, start_time, end_time, competing[0].id
                )
                raise SlotUnavailableError()
            db.commit()
        except ConferenceHubError:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            raise SlotUnavailableError() from exc

    db.refresh(booking)
    logger.info("Reserved room %s for user %s: %s-%s (booking %s)", room_id, user_id, start_time, end_time, booking.id)
    return booking
