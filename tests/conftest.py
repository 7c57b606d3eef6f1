import os
from datetime import datetime
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")

from conference_hub.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from conference_hub.auth import create_access_token  # noqa: E402
from conference_hub.cache import slot_cache  # noqa: E402
from conference_hub.database import Base, SessionLocal, engine  # noqa: E402
from conference_hub.dependencies import get_now  # noqa: E402
from conference_hub.models import RoleEnum, User  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.rooms.app import app as rooms_app  # noqa: E402

# A Monday morning; the API tests book the rest of that week.
NOW = datetime(2031, 3, 3, 7, 0)


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    slot_cache.clear()
    yield
    slot_cache.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> dict:
    """Mutable wall clock shared by both apps; tests move ``clock["now"]``."""
    return {"now": NOW}


@pytest.fixture()
def rooms_client(clock) -> Generator[TestClient, None, None]:
    rooms_app.dependency_overrides[get_now] = lambda: clock["now"]
    with TestClient(rooms_app) as client:
        yield client
    rooms_app.dependency_overrides.clear()


@pytest.fixture()
def bookings_client(clock) -> Generator[TestClient, None, None]:
    bookings_app.dependency_overrides[get_now] = lambda: clock["now"]
    with TestClient(bookings_app) as client:
        yield client
    bookings_app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session) -> Callable[..., dict[str, str]]:
    """Insert a user and return bearer headers for them."""

    def factory(username: str, role: RoleEnum = RoleEnum.REGULAR) -> dict[str, str]:
        db_session.add(User(name=username.title(), username=username, email=f"{username}@example.com", role=role))
        db_session.commit()
        token = create_access_token({"sub": username, "role": role.value})
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture()
def manager_headers(make_user) -> dict[str, str]:
    return make_user("facilities", RoleEnum.FACILITY_MANAGER)


@pytest.fixture()
def user_headers(make_user) -> dict[str, str]:
    return make_user("user1")


@pytest.fixture()
def room_id(rooms_client, manager_headers) -> int:
    response = rooms_client.post(
        "/rooms",
        json={
            "name": "Board Room",
            "capacity": 10,
            "equipment": ["tv", "whiteboard"],
            "location": "Floor 1",
            "is_active": True,
        },
        headers=manager_headers,
    )
    assert response.status_code == 201
    return response.json()["id"]
