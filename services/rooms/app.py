from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conference_hub.booking_calendar import month_restrictions
from conference_hub.cache import invalidate_room, slot_cache, slot_cache_key
from conference_hub.config import get_settings
from conference_hub.database import Base, engine, get_db
from conference_hub.dependencies import get_current_active_user, get_now, require_manager
from conference_hub.errors import BlackoutNotFoundError, ConferenceHubError, RoomNotFoundError
from conference_hub.logging_middleware import add_audit_middleware
from conference_hub.models import Room, User
from conference_hub.rate_limit import SLOT_QUERY_LIMIT, apply_rate_limiter, limiter
from conference_hub.schemas import (
    AvailabilityRead,
    AvailabilitySettings,
    BlackoutCreate,
    BlackoutRead,
    BlackoutUpdate,
    CalendarMonth,
    RoomCreate,
    RoomRead,
    RoomUpdate,
    SlotAvailabilityResult,
)
from conference_hub.slots import SlotCalculator
from conference_hub.stores import SqlAvailabilityStore, SqlBlackoutStore, SqlBookingStore

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Rooms Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "rooms")
    Instrumentator().instrument(fastapi_app, metric_subsystem="rooms").expose(fastapi_app, include_in_schema=False)
    return fastapi_app


app = create_app()


def _get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "rooms"}


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> Room:
    room = Room(**room_in.model_dump())
    db.add(room)
    try:
        db.flush()
        SqlAvailabilityStore(db).get(room.id)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room name already exists") from exc
    db.refresh(room)
    return room


@app.get("/rooms", response_model=List[RoomRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_rooms(
    request: Request,
    capacity: Optional[int] = None,
    location: Optional[str] = None,
    equipment: Optional[List[str]] = Query(default=None),
    db: Session = Depends(get_db),
) -> List[Room]:
    query = db.query(Room).filter(Room.is_active.is_(True))
    if capacity:
        query = query.filter(Room.capacity >= capacity)
    if location:
        query = query.filter(Room.location.ilike(f"%{location}%"))
    rooms = query.order_by(Room.name).all()
    if equipment:
        return [room for room in rooms if set(equipment).issubset(set(room.equipment or []))]
    return rooms


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(request: Request, room_id: int, db: Session = Depends(get_db)) -> Room:
    return _get_room(db, room_id)


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("15/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> Room:
    room = _get_room(db, room_id)
    for key, value in room_update.model_dump(exclude_unset=True).items():
        setattr(room, key, value)
    db.commit()
    db.refresh(room)
    return room


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_room(
    request: Request,
    room_id: int,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> None:
    room = _get_room(db, room_id)
    db.delete(room)
    db.commit()
    invalidate_room(room_id)


@app.get("/rooms/{room_id}/availability", response_model=AvailabilityRead)
@limiter.limit("60/minute")
def get_availability(
    request: Request,
    room_id: int,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> AvailabilityRead:
    try:
        rules = SqlAvailabilityStore(db).get(room_id)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    # Persist defaults created on first read.
    db.commit()
    return rules


@app.put("/rooms/{room_id}/availability", response_model=AvailabilityRead)
@limiter.limit("15/minute")
def update_availability(
    request: Request,
    room_id: int,
    rules_in: AvailabilitySettings,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> AvailabilityRead:
    try:
        rules = SqlAvailabilityStore(db).set(room_id, rules_in)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    db.commit()
    invalidate_room(room_id)
    return rules


@app.get(
    "/rooms/{room_id}/availability/slots",
    response_model=SlotAvailabilityResult,
    response_model_exclude_none=True,
)
@limiter.limit(SLOT_QUERY_LIMIT)
def availability_slots(
    request: Request,
    room_id: int,
    date_param: str = Query(..., alias="date", description="YYYY-MM-DD"),
    force_refresh: bool = False,
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> SlotAvailabilityResult:
    try:
        target = date.fromisoformat(date_param)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid date format. Use YYYY-MM-DD") from exc

    calculator = SlotCalculator(SqlAvailabilityStore(db), SqlBlackoutStore(db), SqlBookingStore(db))
    cache_key = slot_cache_key(room_id, target)
    inputs = None if force_refresh else slot_cache.get(cache_key)
    if inputs is None:
        try:
            inputs = calculator.load_inputs(room_id, target)
        except RoomNotFoundError:
            return SlotAvailabilityResult(date=target, error="Room not found")
        # Never persist lazily created defaults from a read-only endpoint.
        db.rollback()
        slot_cache.set(cache_key, inputs)
    return calculator.compute_from_inputs(room_id, inputs, target, now)


@app.get("/rooms/{room_id}/availability/calendar", response_model=CalendarMonth)
@limiter.limit("30/minute")
def availability_calendar(
    request: Request,
    room_id: int,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
) -> CalendarMonth:
    year = year or now.year
    month = month or now.month
    try:
        rules = SqlAvailabilityStore(db).get(room_id)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    first = datetime(year, month, 1)
    following = datetime(year + month // 12, month % 12 + 1, 1)
    blackouts = SqlBlackoutStore(db).list_between(room_id, first, following + timedelta(days=1))
    db.rollback()
    days = month_restrictions(rules, blackouts, year, month, now.date())
    return CalendarMonth(room_id=room_id, year=year, month=month, days=days)


@app.get("/rooms/{room_id}/blackouts", response_model=List[BlackoutRead])
@limiter.limit("60/minute")
def list_blackouts(
    request: Request,
    room_id: int,
    include_inactive: bool = False,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[BlackoutRead]:
    try:
        return SqlBlackoutStore(db).list(room_id, include_inactive=include_inactive)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@app.post("/rooms/{room_id}/blackouts", response_model=BlackoutRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_blackout(
    request: Request,
    room_id: int,
    blackout_in: BlackoutCreate,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> BlackoutRead:
    try:
        blackout = SqlBlackoutStore(db).create(room_id, blackout_in)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    db.commit()
    invalidate_room(room_id)
    return blackout


@app.put("/blackouts/{blackout_id}", response_model=BlackoutRead)
@limiter.limit("20/minute")
def update_blackout(
    request: Request,
    blackout_id: int,
    blackout_update: BlackoutUpdate,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> BlackoutRead:
    try:
        blackout = SqlBlackoutStore(db).update(blackout_id, blackout_update)
    except BlackoutNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConferenceHubError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    db.commit()
    invalidate_room(blackout.room_id)
    return blackout


@app.delete("/blackouts/{blackout_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_blackout(
    request: Request,
    blackout_id: int,
    hard: bool = False,
    _: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> None:
    try:
        removed = SqlBlackoutStore(db).delete(blackout_id, hard=hard)
    except BlackoutNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    db.commit()
    invalidate_room(removed.room_id)
