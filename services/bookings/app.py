from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from conference_hub.config import get_settings
from conference_hub.database import Base, engine, get_db
from conference_hub.dependencies import get_current_active_user, get_now, require_manager, require_service_key
from conference_hub.errors import (
    BookingDeletionError,
    BookingRejected,
    InvalidStatusTransition,
    RoomNotFoundError,
    SlotUnavailableError,
)
from conference_hub.events import (
    BOOKING_CREATED,
    BOOKING_DELETED,
    BOOKING_EXPIRED,
    BOOKING_STATUS_CHANGED,
    booking_message,
    publish_booking_event,
    publish_event,
)
from conference_hub.lifecycle import MANAGER_ROLES, delete_booking, expire_pending_bookings, requires_manager, transition
from conference_hub.logging_middleware import add_audit_middleware
from conference_hub.models import Booking, BookingStatus, Room, User
from conference_hub.rate_limit import BOOKING_WRITE_LIMIT, apply_rate_limiter, limiter
from conference_hub.reservations import reserve
from conference_hub.schemas import (
    BookingCreate,
    BookingRead,
    BookingRejection,
    BookingStatusUpdate,
    ExpiredBookings,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    Instrumentator().instrument(fastapi_app, metric_subsystem="bookings").expose(fastapi_app, include_in_schema=False)
    return fastapi_app


app = create_app()


def _get_booking(db: Session, booking_id: int, current_user: User) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    if current_user.role not in MANAGER_ROLES and booking.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return booking


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    room_id: Optional[int] = None,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> List[Booking]:
    query = db.query(Booking)
    if room_id is not None:
        query = query.filter(Booking.room_id == room_id)
    if status_filter is not None:
        query = query.filter(Booking.status == status_filter)
    return query.order_by(Booking.start_time.desc()).all()


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_my_bookings(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[Booking]:
    return db.query(Booking).filter(Booking.user_id == current_user.id).order_by(Booking.start_time.desc()).all()


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(BOOKING_WRITE_LIMIT)
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_active_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> Booking:
    if booking_in.end_time <= booking_in.start_time:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End time must be after start time")
    room = db.query(Room).filter(Room.id == booking_in.room_id, Room.is_active.is_(True)).first()
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found or inactive")

    try:
        booking = reserve(
            db,
            booking_in.room_id,
            current_user.id,
            booking_in.start_time,
            booking_in.end_time,
            now,
            title=booking_in.title,
        )
    except BookingRejected as exc:
        rejection = BookingRejection(
            reason=exc.result.reason.value,
            detail=exc.result.detail,
            message=exc.result.message,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=rejection.model_dump()) from exc
    except SlotUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    publish_booking_event(BOOKING_CREATED, booking)
    return booking


@app.post("/bookings/expire-pending", response_model=ExpiredBookings)
@limiter.limit("10/minute")
def expire_pending(
    request: Request,
    _: None = Depends(require_service_key),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> ExpiredBookings:
    expired = expire_pending_bookings(db, now)
    db.commit()
    for booking in expired:
        publish_booking_event(BOOKING_EXPIRED, booking)
    return ExpiredBookings(
        expired_count=len(expired),
        bookings=[BookingRead.model_validate(booking) for booking in expired],
    )


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _get_booking(db, booking_id, current_user)


@app.patch("/bookings/{booking_id}/status", response_model=BookingRead)
@limiter.limit(BOOKING_WRITE_LIMIT)
def update_booking_status(
    request: Request,
    booking_id: int,
    status_update: BookingStatusUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Booking:
    booking = _get_booking(db, booking_id, current_user)
    if requires_manager(status_update.status) and current_user.role not in MANAGER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only facility managers can do that")
    try:
        transition(booking, status_update.status)
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    db.commit()
    db.refresh(booking)
    publish_booking_event(BOOKING_STATUS_CHANGED, booking)
    return booking


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(BOOKING_WRITE_LIMIT)
def remove_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> None:
    booking = _get_booking(db, booking_id, current_user)
    message = booking_message(BOOKING_DELETED, booking)
    try:
        delete_booking(db, booking, now, settings.deletion_cutoff_hours)
    except BookingDeletionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    db.commit()
    publish_event(message)
