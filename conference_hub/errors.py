"""Domain exceptions raised by the engine and translated to HTTP errors by the services."""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validator import ValidationResult


class ConferenceHubError(Exception):
    """Base class for expected, per-request failures."""


class RoomNotFoundError(ConferenceHubError):
    def __init__(self, room_id: int) -> None:
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class BlackoutNotFoundError(ConferenceHubError):
    def __init__(self, blackout_id: int) -> None:
        super().__init__(f"Blackout {blackout_id} not found")
        self.blackout_id = blackout_id


class SlotUnavailableError(ConferenceHubError):
    """The slot was taken by a concurrent booking between validation and insert."""

    def __init__(self, message: str = "Slot no longer available, please refresh and pick another time") -> None:
        super().__init__(message)


class BookingDeletionError(ConferenceHubError):
    pass


class InvalidStatusTransition(ConferenceHubError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot change booking status from {current} to {target}")
        self.current = current
        self.target = target


class BookingRejected(ConferenceHubError):
    """The validator refused the booking; ``result`` carries the violation."""

    def __init__(self, result: "ValidationResult") -> None:
        super().__init__(result.message)
        self.result = result
