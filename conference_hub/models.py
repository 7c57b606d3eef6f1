"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import Boolean, DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class RoleEnum(str, Enum):
    ADMIN = "admin"
    REGULAR = "regular"
    FACILITY_MANAGER = "facility_manager"
    SERVICE = "service"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


# Statuses that hold the room.
OCCUPYING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class BlackoutType(str, Enum):
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"
    EVENT = "event"
    HOLIDAY = "holiday"
    REPAIR = "repair"
    OTHER = "other"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.REGULAR)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user")


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    capacity: Mapped[int] = mapped_column(Integer, index=True)
    equipment: Mapped[list[str]] = mapped_column(JSON, default=list)
    location: Mapped[str] = mapped_column(String(255), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    availability: Mapped[Optional["RoomAvailability"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", uselist=False
    )
    blackouts: Mapped[List["RoomBlackout"]] = relationship(back_populates="room", cascade="all, delete-orphan")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="room", cascade="all, delete-orphan")


class RoomAvailability(Base):
    __tablename__ = "room_availability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), unique=True, index=True)
    operating_hours: Mapped[dict[str, Any]] = mapped_column(JSON)
    min_booking_duration: Mapped[int] = mapped_column(Integer, default=30)
    max_booking_duration: Mapped[int] = mapped_column(Integer, default=480)
    buffer_time: Mapped[int] = mapped_column(Integer, default=15)
    advance_booking_days: Mapped[int] = mapped_column(Integer, default=30)
    same_day_booking_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    max_bookings_per_user_per_day: Mapped[int] = mapped_column(Integer, default=1)
    max_bookings_per_user_per_week: Mapped[int] = mapped_column(Integer, default=5)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    room: Mapped[Room] = relationship(back_populates="availability")


class RoomBlackout(Base):
    __tablename__ = "room_blackouts"
    __table_args__ = (Index("ix_room_blackouts_room_window", "room_id", "start_time", "end_time"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, default=None)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    blackout_type: Mapped[BlackoutType] = mapped_column(SqlEnum(BlackoutType), default=BlackoutType.MAINTENANCE)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None, onupdate=datetime.now)

    room: Mapped[Room] = relationship(back_populates="blackouts")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_room_window", "room_id", "start_time", "end_time"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.PENDING, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None, onupdate=datetime.now)

    user: Mapped[User] = relationship(back_populates="bookings")
    room: Mapped[Room] = relationship(back_populates="bookings")
