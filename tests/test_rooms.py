from datetime import datetime

from conference_hub.models import Booking, BookingStatus, RoleEnum, RoomBlackout, User

TUESDAY = "2031-03-04"
SATURDAY = "2031-03-08"


def slots(rooms_client, room_id: int, day: str = TUESDAY, **params):
    response = rooms_client.get(f"/rooms/{room_id}/availability/slots", params={"date": day, **params})
    assert response.status_code == 200
    return response.json()


def test_room_crud(rooms_client, manager_headers, room_id):
    list_resp = rooms_client.get("/rooms?capacity=5")
    assert list_resp.status_code == 200
    assert [room["id"] for room in list_resp.json()] == [room_id]
    assert rooms_client.get("/rooms?capacity=50").json() == []
    assert len(rooms_client.get("/rooms?equipment=tv").json()) == 1
    assert rooms_client.get("/rooms?equipment=projector").json() == []

    update_resp = rooms_client.put(f"/rooms/{room_id}", json={"capacity": 12}, headers=manager_headers)
    assert update_resp.status_code == 200
    assert update_resp.json()["capacity"] == 12

    duplicate = rooms_client.post(
        "/rooms",
        json={"name": "Board Room", "capacity": 4, "location": "Floor 3"},
        headers=manager_headers,
    )
    assert duplicate.status_code == 400

    delete_resp = rooms_client.delete(f"/rooms/{room_id}", headers=manager_headers)
    assert delete_resp.status_code == 204
    assert rooms_client.get(f"/rooms/{room_id}").status_code == 404


def test_regular_user_cannot_manage_rooms(rooms_client, make_user):
    headers = make_user("visitor", RoleEnum.REGULAR)
    response = rooms_client.post(
        "/rooms",
        json={"name": "Huddle", "capacity": 3, "location": "Floor 1"},
        headers=headers,
    )
    assert response.status_code == 403


def test_new_room_gets_default_availability(rooms_client, user_headers, room_id):
    response = rooms_client.get(f"/rooms/{room_id}/availability", headers=user_headers)
    assert response.status_code == 200
    rules = response.json()
    assert rules["room_id"] == room_id
    assert rules["min_booking_duration"] == 30
    assert rules["max_booking_duration"] == 480
    assert rules["buffer_time"] == 15
    assert rules["advance_booking_days"] == 30
    assert rules["same_day_booking_enabled"] is True
    assert rules["max_bookings_per_user_per_day"] == 1
    assert rules["max_bookings_per_user_per_week"] == 5
    assert rules["operating_hours"]["monday"] == {"enabled": True, "start": "08:00", "end": "18:00"}
    assert rules["operating_hours"]["sunday"]["enabled"] is False


def test_update_availability_validates_rules(rooms_client, manager_headers, room_id):
    url = f"/rooms/{room_id}/availability"
    bad_bounds = rooms_client.put(
        url, json={"min_booking_duration": 120, "max_booking_duration": 60}, headers=manager_headers
    )
    assert bad_bounds.status_code == 422
    off_grid = rooms_client.put(url, json={"min_booking_duration": 45}, headers=manager_headers)
    assert off_grid.status_code == 422
    bad_buffer = rooms_client.put(url, json={"buffer_time": 90}, headers=manager_headers)
    assert bad_buffer.status_code == 422
    bad_hours = rooms_client.put(
        url,
        json={"operating_hours": {"monday": {"enabled": True, "start": "18:00", "end": "08:00"}}},
        headers=manager_headers,
    )
    assert bad_hours.status_code == 422

    ok = rooms_client.put(
        url,
        json={
            "buffer_time": 0,
            "operating_hours": {"saturday": {"enabled": True, "start": "10:00", "end": "14:00"}},
        },
        headers=manager_headers,
    )
    assert ok.status_code == 200
    assert ok.json()["buffer_time"] == 0
    assert ok.json()["operating_hours"]["saturday"]["enabled"] is True

    saturday = slots(rooms_client, room_id, SATURDAY)
    assert saturday["startOptions"][0] == "10:00"
    assert saturday["startOptions"][-1] == "13:30"


def test_slots_default_weekday(rooms_client, room_id):
    result = slots(rooms_client, room_id)
    assert result["date"] == TUESDAY
    assert "error" not in result
    assert result["operatingHours"] == {"enabled": True, "start": "08:00", "end": "18:00"}
    assert result["restrictions"] == {
        "minDuration": 30,
        "maxDuration": 480,
        "bufferTime": 15,
        "advanceBookingDays": 30,
        "sameDayBookingEnabled": True,
    }
    assert result["startOptions"][0] == "08:00"
    assert result["startOptions"][-1] == "17:30"
    assert len(result["startOptions"]) == 20
    assert result["endOptionsByStart"]["08:00"][0] == "08:30"
    assert result["endOptionsByStart"]["08:00"][-1] == "16:00"
    assert result["endOptionsByStart"]["17:30"] == ["18:00"]
    assert result["unavailableReasons"] == {}


def test_slots_rejects_bad_dates(rooms_client, room_id):
    response = rooms_client.get(f"/rooms/{room_id}/availability/slots", params={"date": "03/04/2031"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid date format. Use YYYY-MM-DD"

    closed = slots(rooms_client, room_id, SATURDAY)
    assert closed["error"] == "Room is closed on saturdays"
    assert closed["startOptions"] == []

    past = slots(rooms_client, room_id, "2031-03-02")
    assert past["error"] == "Cannot book dates in the past"

    too_far = slots(rooms_client, room_id, "2031-04-10")
    assert too_far["error"] == "Bookings can only be made up to 30 days in advance"

    missing = slots(rooms_client, 999)
    assert missing["error"] == "Room not found"


def test_slots_today_skips_past_times(rooms_client, room_id, clock):
    clock["now"] = clock["now"].replace(hour=10, minute=10)
    result = slots(rooms_client, room_id, "2031-03-03")
    assert result["startOptions"][0] == "10:30"
    assert result["unavailableReasons"]["08:00"] == "rule:past_time"
    assert result["unavailableReasons"]["10:00"] == "rule:past_time"


def test_same_day_booking_disabled(rooms_client, manager_headers, room_id):
    rooms_client.put(
        f"/rooms/{room_id}/availability", json={"same_day_booking_enabled": False}, headers=manager_headers
    )
    result = slots(rooms_client, room_id, "2031-03-03")
    assert result["error"] == "Same-day booking is not enabled for this room"
    assert result["startOptions"] == []


def test_blackout_lifecycle(rooms_client, manager_headers, user_headers, room_id):
    before = slots(rooms_client, room_id)
    assert "12:00" in before["startOptions"]

    create_resp = rooms_client.post(
        f"/rooms/{room_id}/blackouts",
        json={
            "title": "Carpet cleaning",
            "start_time": f"{TUESDAY}T12:00:00",
            "end_time": f"{TUESDAY}T13:00:00",
            "blackout_type": "cleaning",
        },
        headers=manager_headers,
    )
    assert create_resp.status_code == 201
    blackout = create_resp.json()
    assert blackout["is_active"] is True

    during = slots(rooms_client, room_id)
    assert during["unavailableReasons"]["12:00"] == "conflict:blackout"
    assert during["unavailableReasons"]["12:30"] == "conflict:blackout"
    assert "13:00" in during["startOptions"]
    assert during["endOptionsByStart"]["11:00"][-1] == "12:00"

    bad_update = rooms_client.put(
        f"/blackouts/{blackout['id']}", json={"end_time": f"{TUESDAY}T11:00:00"}, headers=manager_headers
    )
    assert bad_update.status_code == 400

    update_resp = rooms_client.put(
        f"/blackouts/{blackout['id']}", json={"end_time": f"{TUESDAY}T14:00:00"}, headers=manager_headers
    )
    assert update_resp.status_code == 200
    assert slots(rooms_client, room_id)["unavailableReasons"]["13:30"] == "conflict:blackout"

    delete_resp = rooms_client.delete(f"/blackouts/{blackout['id']}", headers=manager_headers)
    assert delete_resp.status_code == 204
    assert rooms_client.get(f"/rooms/{room_id}/blackouts", headers=user_headers).json() == []
    inactive = rooms_client.get(
        f"/rooms/{room_id}/blackouts?include_inactive=true", headers=user_headers
    ).json()
    assert [item["is_active"] for item in inactive] == [False]
    assert "12:00" in slots(rooms_client, room_id)["startOptions"]

    hard_delete = rooms_client.delete(f"/blackouts/{blackout['id']}?hard=true", headers=manager_headers)
    assert hard_delete.status_code == 204
    assert rooms_client.delete(f"/blackouts/{blackout['id']}", headers=manager_headers).status_code == 404


def test_blackout_requires_valid_window(rooms_client, manager_headers, room_id):
    response = rooms_client.post(
        f"/rooms/{room_id}/blackouts",
        json={
            "title": "Backwards",
            "start_time": f"{TUESDAY}T13:00:00",
            "end_time": f"{TUESDAY}T12:00:00",
        },
        headers=manager_headers,
    )
    assert response.status_code == 422


def test_blackout_update_rejects_nulls(rooms_client, manager_headers, room_id):
    blackout = rooms_client.post(
        f"/rooms/{room_id}/blackouts",
        json={"title": "AV upgrade", "start_time": f"{TUESDAY}T12:00:00", "end_time": f"{TUESDAY}T13:00:00"},
        headers=manager_headers,
    ).json()

    for field in ("title", "start_time", "end_time", "blackout_type", "is_recurring", "is_active"):
        response = rooms_client.put(f"/blackouts/{blackout['id']}", json={field: None}, headers=manager_headers)
        assert response.status_code == 422, field

    cleared = rooms_client.put(f"/blackouts/{blackout['id']}", json={"description": None}, headers=manager_headers)
    assert cleared.status_code == 200
    assert cleared.json()["title"] == "AV upgrade"


def test_room_update_rejects_nulls(rooms_client, manager_headers, room_id):
    response = rooms_client.put(f"/rooms/{room_id}", json={"location": None}, headers=manager_headers)
    assert response.status_code == 422
    assert rooms_client.get(f"/rooms/{room_id}").json()["location"] == "Floor 1"


def test_slot_results_are_cached_until_refresh(rooms_client, room_id, db_session):
    assert "09:00" in slots(rooms_client, room_id)["startOptions"]
    # Written behind the API's back, so nothing invalidates the cache.
    db_session.add(
        RoomBlackout(
            room_id=room_id,
            title="Fire drill",
            start_time=datetime(2031, 3, 4, 9, 0),
            end_time=datetime(2031, 3, 4, 10, 0),
        )
    )
    db_session.commit()

    assert "09:00" in slots(rooms_client, room_id)["startOptions"]
    refreshed = slots(rooms_client, room_id, force_refresh="true")
    assert refreshed["unavailableReasons"]["09:00"] == "conflict:blackout"


def test_cached_slots_reflect_new_bookings(rooms_client, room_id, db_session):
    assert "10:00" in slots(rooms_client, room_id)["startOptions"]
    # Stored straight to the database, the way a bookings service in another process would.
    guest = User(name="Guest", username="guest", email="guest@example.com")
    db_session.add(guest)
    db_session.flush()
    db_session.add(
        Booking(
            room_id=room_id,
            user_id=guest.id,
            start_time=datetime(2031, 3, 4, 10, 0),
            end_time=datetime(2031, 3, 4, 11, 0),
            status=BookingStatus.CONFIRMED,
        )
    )
    db_session.commit()

    after = slots(rooms_client, room_id)
    assert "10:00" not in after["startOptions"]
    assert after["unavailableReasons"]["10:00"] == "conflict:existing_booking"


def test_cached_slots_for_today_follow_the_clock(rooms_client, room_id, clock):
    today = clock["now"].date().isoformat()
    assert slots(rooms_client, room_id, day=today)["startOptions"][0] == "08:00"

    clock["now"] = datetime(2031, 3, 3, 9, 10)
    later = slots(rooms_client, room_id, day=today)
    assert later["startOptions"][0] == "09:30"
    assert later["unavailableReasons"]["08:30"] == "rule:past_time"


def test_month_calendar(rooms_client, manager_headers, room_id):
    rooms_client.post(
        f"/rooms/{room_id}/blackouts",
        json={
            "title": "Company offsite",
            "start_time": "2031-03-05T00:00:00",
            "end_time": "2031-03-06T00:00:00",
            "blackout_type": "event",
        },
        headers=manager_headers,
    )
    response = rooms_client.get(f"/rooms/{room_id}/availability/calendar?year=2031&month=3")
    assert response.status_code == 200
    body = response.json()
    assert body["room_id"] == room_id
    days = {day["date"]: day for day in body["days"]}
    assert len(days) == 31
    assert days["2031-03-01"]["restriction"] == "past"
    assert days["2031-03-03"]["restriction"] == "none"
    assert days["2031-03-04"]["restriction"] == "none"
    assert days["2031-03-05"] == {"date": "2031-03-05", "restriction": "blackout", "message": "Company offsite"}
    assert days["2031-03-08"]["restriction"] == "closed"
    assert days["2031-03-08"]["message"] == "Room closed on Saturdays"

    april = {day["date"]: day for day in rooms_client.get(
        f"/rooms/{room_id}/availability/calendar?year=2031&month=4"
    ).json()["days"]}
    assert april["2031-04-02"]["restriction"] == "none"
    assert april["2031-04-03"]["restriction"] == "beyond-window"


def test_calendar_defaults_to_current_month(rooms_client, room_id):
    body = rooms_client.get(f"/rooms/{room_id}/availability/calendar").json()
    assert (body["year"], body["month"]) == (2031, 3)
    assert rooms_client.get("/rooms/999/availability/calendar").status_code == 404


def test_health_and_metrics(rooms_client, bookings_client):
    assert rooms_client.get("/health").json() == {"status": "ok", "service": "rooms"}
    assert bookings_client.get("/health").json() == {"status": "ok", "service": "bookings"}
    rooms_client.get("/rooms")
    metrics = rooms_client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_request" in metrics.text
