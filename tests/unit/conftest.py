"""In-memory stores so the slot engine can be tested without a database."""
from datetime import datetime
from itertools import count
from typing import Dict, List, Optional

import pytest

from conference_hub.errors import RoomNotFoundError
from conference_hub.models import OCCUPYING_STATUSES, BookingStatus
from conference_hub.schemas import AvailabilitySettings, BlackoutRead, BookingRead
from conference_hub.slots import SlotCalculator
from conference_hub.validator import BookingValidator

ROOM_ID = 1


class FakeAvailabilityStore:
    def __init__(self) -> None:
        self.rules: Dict[int, AvailabilitySettings] = {ROOM_ID: AvailabilitySettings()}

    def get(self, room_id: int) -> AvailabilitySettings:
        if room_id not in self.rules:
            raise RoomNotFoundError(room_id)
        return self.rules[room_id]

    def set(self, room_id: int, rules: AvailabilitySettings) -> AvailabilitySettings:
        self.rules[room_id] = rules
        return rules


class FakeBlackoutStore:
    def __init__(self) -> None:
        self.items: List[BlackoutRead] = []
        self._ids = count(1)

    def add(self, start: datetime, end: datetime, title: str = "Maintenance", room_id: int = ROOM_ID, **extra):
        blackout = BlackoutRead(
            id=next(self._ids), room_id=room_id, title=title, start_time=start, end_time=end, **extra
        )
        self.items.append(blackout)
        return blackout

    def list(self, room_id: int, include_inactive: bool = False) -> List[BlackoutRead]:
        return [item for item in self.items if item.room_id == room_id and (include_inactive or item.is_active)]

    def list_between(self, room_id: int, start: datetime, end: datetime) -> List[BlackoutRead]:
        return [item for item in self.list(room_id) if item.start_time < end and item.end_time > start]


class FakeBookingStore:
    def __init__(self) -> None:
        self.items: List[BookingRead] = []
        self._ids = count(1)

    def add(
        self,
        start: datetime,
        end: datetime,
        user_id: int = 99,
        status: BookingStatus = BookingStatus.CONFIRMED,
        room_id: int = ROOM_ID,
    ) -> BookingRead:
        booking = BookingRead(
            id=next(self._ids), room_id=room_id, user_id=user_id, start_time=start, end_time=end, status=status
        )
        self.items.append(booking)
        return booking

    def occupying_between(
        self, room_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[BookingRead]:
        return [
            item
            for item in self.items
            if item.room_id == room_id
            and item.status in OCCUPYING_STATUSES
            and item.id != exclude_id
            and item.start_time < end
            and item.end_time > start
        ]

    def count_for_user(self, room_id: int, user_id: int, start: datetime, end: datetime) -> int:
        return sum(
            1
            for item in self.items
            if item.room_id == room_id
            and item.user_id == user_id
            and item.status in OCCUPYING_STATUSES
            and start <= item.start_time < end
        )


@pytest.fixture()
def availability() -> FakeAvailabilityStore:
    return FakeAvailabilityStore()


@pytest.fixture()
def blackouts() -> FakeBlackoutStore:
    return FakeBlackoutStore()


@pytest.fixture()
def bookings() -> FakeBookingStore:
    return FakeBookingStore()


@pytest.fixture()
def calculator(availability, blackouts, bookings) -> SlotCalculator:
    return SlotCalculator(availability, blackouts, bookings)


@pytest.fixture()
def validator(calculator) -> BookingValidator:
    return BookingValidator(calculator)
