"""Store interfaces consumed by the slot engine and their SQLAlchemy implementations.

The engine only talks to the protocols below, so the calculator and validator
can be exercised against in-memory fakes. The SQL stores never commit; the
caller owns the transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import BlackoutNotFoundError, ConferenceHubError, RoomNotFoundError
from .models import OCCUPYING_STATUSES, Booking, Room, RoomAvailability, RoomBlackout
from .schemas import (
    AvailabilityRead,
    AvailabilitySettings,
    BlackoutCreate,
    BlackoutRead,
    BlackoutUpdate,
    BookingRead,
)

logger = logging.getLogger(__name__)


class AvailabilityStore(Protocol):
    def get(self, room_id: int) -> AvailabilitySettings: ...

    def set(self, room_id: int, rules: AvailabilitySettings) -> AvailabilitySettings: ...


class BlackoutStore(Protocol):
    def list(self, room_id: int, include_inactive: bool = False) -> List[BlackoutRead]: ...

    def list_between(self, room_id: int, start: datetime, end: datetime) -> List[BlackoutRead]: ...


class BookingStore(Protocol):
    def occupying_between(
        self, room_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[BookingRead]: ...

    def count_for_user(self, room_id: int, user_id: int, start: datetime, end: datetime) -> int: ...


def _require_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise RoomNotFoundError(room_id)
    return room


class SqlAvailabilityStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _row(self, room_id: int) -> RoomAvailability:
        _require_room(self.db, room_id)
        row = self.db.scalar(select(RoomAvailability).where(RoomAvailability.room_id == room_id))
        if row is None:
            logger.info("Creating default availability rules for room %s", room_id)
            row = RoomAvailability(room_id=room_id, **AvailabilitySettings().model_dump(mode="json"))
            self.db.add(row)
            self.db.flush()
        return row

    def get(self, room_id: int) -> AvailabilityRead:
        return AvailabilityRead.model_validate(self._row(room_id))

    def set(self, room_id: int, rules: AvailabilitySettings) -> AvailabilityRead:
        row = self._row(room_id)
        for key, value in rules.model_dump(mode="json").items():
            setattr(row, key, value)
        self.db.flush()
        self.db.refresh(row)
        return AvailabilityRead.model_validate(row)

    def lock(self, room_id: int) -> None:
        """Take a row lock on the room's rules for the rest of the transaction.

        ``FOR UPDATE`` is ignored by SQLite, which serializes writers on its own.
        """
        self._row(room_id)
        self.db.execute(
            select(RoomAvailability.id).where(RoomAvailability.room_id == room_id).with_for_update()
        )


class SqlBlackoutStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _row(self, blackout_id: int) -> RoomBlackout:
        row = self.db.get(RoomBlackout, blackout_id)
        if row is None:
            raise BlackoutNotFoundError(blackout_id)
        return row

    def get(self, blackout_id: int) -> BlackoutRead:
        return BlackoutRead.model_validate(self._row(blackout_id))

    def list(self, room_id: int, include_inactive: bool = False) -> List[BlackoutRead]:
        _require_room(self.db, room_id)
        query = select(RoomBlackout).where(RoomBlackout.room_id == room_id)
        if not include_inactive:
            query = query.where(RoomBlackout.is_active.is_(True))
        rows = self.db.scalars(query.order_by(RoomBlackout.start_time)).all()
        return [BlackoutRead.model_validate(row) for row in rows]

    def list_between(self, room_id: int, start: datetime, end: datetime) -> List[BlackoutRead]:
        rows = self.db.scalars(
            select(RoomBlackout)
            .where(
                RoomBlackout.room_id == room_id,
                RoomBlackout.is_active.is_(True),
                RoomBlackout.start_time < end,
                RoomBlackout.end_time > start,
            )
            .order_by(RoomBlackout.start_time)
        ).all()
        return [BlackoutRead.model_validate(row) for row in rows]

    def create(self, room_id: int, data: BlackoutCreate) -> BlackoutRead:
        _require_room(self.db, room_id)
        row = RoomBlackout(room_id=room_id, **data.model_dump())
        self.db.add(row)
        self.db.flush()
        self.db.refresh(row)
        return BlackoutRead.model_validate(row)

    def update(self, blackout_id: int, data: BlackoutUpdate) -> BlackoutRead:
        row = self._row(blackout_id)
        changes = data.model_dump(exclude_unset=True)
        start = changes.get("start_time", row.start_time)
        end = changes.get("end_time", row.end_time)
        if end <= start:
            raise ConferenceHubError("Blackout must end after it starts")
        for key, value in changes.items():
            setattr(row, key, value)
        self.db.flush()
        self.db.refresh(row)
        return BlackoutRead.model_validate(row)

    def delete(self, blackout_id: int, hard: bool = False) -> BlackoutRead:
        row = self._row(blackout_id)
        removed = BlackoutRead.model_validate(row)
        if hard:
            self.db.delete(row)
        else:
            row.is_active = False
        self.db.flush()
        return removed


class SqlBookingStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def occupying_between(
        self, room_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[BookingRead]:
        query = select(Booking).where(
            Booking.room_id == room_id,
            Booking.status.in_(OCCUPYING_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_id is not None:
            query = query.where(Booking.id != exclude_id)
        rows = self.db.scalars(query.order_by(Booking.start_time)).all()
        return [BookingRead.model_validate(row) for row in rows]

    def count_for_user(self, room_id: int, user_id: int, start: datetime, end: datetime) -> int:
        return self.db.scalar(
            select(func.count(Booking.id)).where(
                Booking.room_id == room_id,
                Booking.user_id == user_id,
                Booking.status.in_(OCCUPYING_STATUSES),
                Booking.start_time >= start,
                Booking.start_time < end,
            )
        ) or 0
