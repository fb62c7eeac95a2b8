"""HTTP tests for the calendar, bookings and scheduler endpoints."""

import asyncio
from datetime import date

import pytest
from fastapi import Depends, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.api.v1.bookings import BookingCreateRequest, BookingDTO, create_booking
from app.api.v1.calendar import get_ical_service
from app.db.session import get_db
from app.domain.models.blocked_date import BlockedDate
from app.domain.models.booking import Booking
from app.domain.models.room import Room
from app.main import app
from app.repositories.calendar_setting_repository import CalendarSettingRepository
from app.services.ical_service import IcalService
from app.services.sync_scheduler import CalendarSyncWorker
from conftest import feed_client, make_feed, vevent

FEED_URL = "https://www.airbnb.com/calendar/ical/555.ics?s=token"
FEED = make_feed(
    vevent(
        "res@airbnb.com",
        date(2024, 6, 1),
        date(2024, 6, 4),
        "Reserved",
        description="Reservation URL: https://www.airbnb.com/hosting/reservations/details/HMZZ9999",
    ),
    vevent("blk@airbnb.com", date(2024, 6, 10), date(2024, 6, 12), "Airbnb (Not available)"),
)


@pytest.fixture
def routes():
    return {FEED_URL: FEED}


@pytest.fixture
def client(session_factory, routes):
    def override_ical_service(db: Session = Depends(get_db)) -> IcalService:
        return IcalService(db=db, http_client=feed_client(routes))

    app.dependency_overrides[get_ical_service] = override_ical_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def room_id(session_factory):
    with session_factory() as db:
        room = Room(name="Garden Room")
        db.add(room)
        db.commit()
        return room.id


def _connect_and_sync(client, room_id):
    assert client.put(f"/api/v1/calendar/{room_id}/ical-url", json={"ical_url": FEED_URL}).status_code == 200
    response = client.post(f"/api/v1/calendar/{room_id}/sync")
    assert response.status_code == 200
    return response.json()


class TestIntegrationSetup:
    def test_set_url_and_list_configurations(self, client, room_id):
        response = client.put(f"/api/v1/calendar/{room_id}/ical-url", json={"ical_url": FEED_URL})
        assert response.status_code == 200

        configs = client.get("/api/v1/calendar/sync-configurations").json()
        assert configs == [{
            "room_id": room_id,
            "room_name": "Garden Room",
            "calendar_url": FEED_URL,
            "platform": "airbnb",
            "sync_enabled": True,
            "last_sync": None,
            "last_sync_error": None,
        }]

    def test_rejects_non_http_url(self, client, room_id):
        response = client.put(f"/api/v1/calendar/{room_id}/ical-url", json={"ical_url": "webcal://x"})
        assert response.status_code == 400

    def test_unknown_room(self, client):
        response = client.put("/api/v1/calendar/999/ical-url", json={"ical_url": FEED_URL})
        assert response.status_code == 404

    def test_sync_without_url(self, client, room_id):
        assert client.post(f"/api/v1/calendar/{room_id}/sync").status_code == 400


class TestSyncEndpoints:
    def test_manual_sync(self, client, room_id):
        body = _connect_and_sync(client, room_id)
        assert body["success"] is True
        assert body["changes"]["bookings_created"] == 1
        assert body["changes"]["blocked_created"] == 1

        stats = client.get(f"/api/v1/calendar/{room_id}/sync-stats").json()
        assert stats["airbnb_bookings"] == 1
        assert stats["airbnb_blocked_dates"] == 1
        assert stats["last_error"] is None

    @pytest.mark.parametrize("routes", [{FEED_URL: 500}])
    def test_failed_sync_is_reported(self, client, room_id):
        body = _connect_and_sync(client, room_id)
        assert body["success"] is False

        configs = client.get("/api/v1/calendar/sync-configurations").json()
        assert configs[0]["last_sync_error"]

    def test_month_view(self, client, room_id):
        _connect_and_sync(client, room_id)
        body = client.get(f"/api/v1/calendar/{room_id}", params={"year": 2024, "month": 6}).json()

        days = {d["date"]: d for d in body["days"]}
        assert days["2024-06-01"]["type"] == "checkin"
        assert days["2024-06-03"]["type"] == "booked"
        assert days["2024-06-04"]["type"] == "available"
        assert days["2024-06-10"]["type"] == "blocked"
        assert days["2024-06-10"]["blocked_source"] == "airbnb_blocked"
        assert body["booked_days"] == 3
        assert body["blocked_days"] == 2
        assert body["total_days"] == 30

    def test_quick_unblock(self, client, room_id):
        _connect_and_sync(client, room_id)
        response = client.post(
            f"/api/v1/calendar/{room_id}/quick-unblock",
            json={"start_date": "2024-06-01", "end_date": "2024-06-30"},
        )
        assert response.status_code == 200
        assert response.json()["deleted"] == 1

    def test_remove_integration(self, client, room_id):
        _connect_and_sync(client, room_id)
        response = client.delete(f"/api/v1/calendar/{room_id}/integration")
        assert response.status_code == 200
        assert response.json()["bookings_deleted"] == 1
        assert client.get("/api/v1/calendar/sync-configurations").json() == []
        assert client.delete(f"/api/v1/calendar/{room_id}/integration").status_code == 404


class TestBlockedDates:
    def test_create_and_delete_manual_block(self, client, room_id):
        response = client.post(
            f"/api/v1/calendar/{room_id}/blocked-dates",
            json={"start_date": "2024-08-01", "end_date": "2024-08-03", "reason": "Repairs"},
        )
        assert response.status_code == 201
        blocked_id = response.json()["id"]
        assert response.json()["source"] == "manual"

        assert client.delete(f"/api/v1/calendar/blocked-dates/{blocked_id}").status_code == 200
        assert client.delete(f"/api/v1/calendar/blocked-dates/{blocked_id}").status_code == 404

    def test_airbnb_block_cannot_be_deleted_directly(self, client, room_id, session_factory):
        _connect_and_sync(client, room_id)
        with session_factory() as db:
            blocked_id = db.query(BlockedDate.id).filter(BlockedDate.source == "airbnb_blocked").scalar()
        assert client.delete(f"/api/v1/calendar/blocked-dates/{blocked_id}").status_code == 409

    def test_invalid_range(self, client, room_id):
        response = client.post(
            f"/api/v1/calendar/{room_id}/blocked-dates",
            json={"start_date": "2024-08-03", "end_date": "2024-08-03"},
        )
        assert response.status_code == 400


class TestAvailabilityAndBookings:
    def _book(self, client, room_id, check_in, check_out, **extra):
        payload = {
            "room_id": room_id,
            "check_in_date": check_in,
            "check_out_date": check_out,
            "guest_name": "Asha Rao",
            **extra,
        }
        return client.post("/api/v1/bookings", json=payload)

    def test_booking_conflicts_with_synced_airbnb_booking(self, client, room_id):
        _connect_and_sync(client, room_id)
        response = self._book(client, room_id, "2024-06-03", "2024-06-05")
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "website_booking_conflict"

    def test_booking_conflicts_with_blocked_dates(self, client, room_id):
        _connect_and_sync(client, room_id)
        response = self._book(client, room_id, "2024-06-11", "2024-06-13")
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "blocked_date_conflict"

    def test_back_to_back_booking_allowed(self, client, room_id):
        _connect_and_sync(client, room_id)
        response = self._book(client, room_id, "2024-06-04", "2024-06-06")
        assert response.status_code == 201
        body = response.json()
        assert body["booking_source"] == "website"
        assert body["check_in_time"] == "1:00 PM"

        listed = client.get("/api/v1/bookings", params={"room_id": room_id, "source": "website"}).json()
        assert [b["id"] for b in listed] == [body["id"]]

    def test_same_day_booking_rejected(self, client, room_id):
        response = self._book(client, room_id, "2024-06-04", "2024-06-04")
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "same_day_checkin_checkout"

    def test_verify_with_airbnb_feed(self, client, room_id):
        # URL 만 설정하고 동기화 전: DB 는 비어있지만 피드에는 예약이 있음
        client.put(f"/api/v1/calendar/{room_id}/ical-url", json={"ical_url": FEED_URL})
        response = self._book(client, room_id, "2024-06-02", "2024-06-03", verify_with_airbnb=True)
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "airbnb_booking_conflict"

    def test_check_availability_endpoint(self, client, room_id):
        _connect_and_sync(client, room_id)
        busy = client.post(
            "/api/v1/calendar/check-availability",
            json={"room_id": room_id, "check_in": "2024-06-02", "check_out": "2024-06-03"},
        ).json()
        assert busy["available"] is False
        assert busy["reason"] == "website_booking_conflict"

        free = client.post(
            "/api/v1/calendar/check-availability",
            json={
                "room_id": room_id,
                "check_in": "2024-06-04",
                "check_out": "2024-06-10",
                "include_airbnb_feed": True,
            },
        ).json()
        assert free["available"] is True
        assert free["airbnb_check"]["reason"] == "available"

    def test_cancel_website_booking_frees_dates(self, client, room_id):
        booking = self._book(client, room_id, "2024-09-01", "2024-09-03").json()
        assert self._book(client, room_id, "2024-09-02", "2024-09-04").status_code == 409

        cancelled = client.post(f"/api/v1/bookings/{booking['id']}/cancel").json()
        assert cancelled["booking_status"] == "cancelled"
        assert self._book(client, room_id, "2024-09-02", "2024-09-04").status_code == 201


class TestFeedAndScheduler:
    def test_feed_excludes_airbnb_rows(self, client, room_id):
        _connect_and_sync(client, room_id)
        client.post(
            "/api/v1/bookings",
            json={"room_id": room_id, "check_in_date": "2024-06-20", "check_out_date": "2024-06-22",
                  "guest_name": "Asha Rao", "booking_status": "confirmed"},
        )
        response = client.get("/api/v1/calendar/feed.ics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert "BOOKED - Garden Room - Asha Rao" in response.text
        assert "Airbnb Guest" not in response.text

    def test_scheduler_status_when_disabled(self, client):
        status = client.get("/api/v1/scheduler/status").json()
        assert status["running"] is False
        assert status["jobs"] == []

    def test_run_now(self, client, room_id, session_factory):
        client.put(f"/api/v1/calendar/{room_id}/ical-url", json={"ical_url": FEED_URL})
        app.state.sync_scheduler.worker = CalendarSyncWorker(
            session_factory, http_client=feed_client({FEED_URL: FEED})
        )

        body = client.post("/api/v1/scheduler/run-now").json()

        assert body["status"] == "ok"
        assert body["succeeded"] == 1
        status = client.get("/api/v1/scheduler/status").json()
        assert str(room_id) in status["last_sync_timestamps"]


class _SlowFeed:
    """fetch_ical 만 흉내 (응답 전에 잠깐 멈춤)"""

    async def fetch_ical(self, url):
        await asyncio.sleep(0.05)
        return make_feed()


class TestConcurrentBookingCreation:
    async def test_same_dates_only_one_wins(self, session_factory, room):
        with session_factory() as db:
            CalendarSettingRepository(db).set_calendar_url(room.id, FEED_URL)
            db.commit()

        def request(name):
            return BookingCreateRequest(
                room_id=room.id,
                check_in_date=date(2024, 3, 10),
                check_out_date=date(2024, 3, 15),
                guest_name=name,
                verify_with_airbnb=True,
            )

        # 두 요청이 피드를 기다리는 동안 서로의 INSERT 를 못 본 채로 통과하면 안 됨
        with session_factory() as db:
            results = await asyncio.gather(
                create_booking(request("Asha Rao"), db=db, ical_service=_SlowFeed()),
                create_booking(request("Ben Cole"), db=db, ical_service=_SlowFeed()),
                return_exceptions=True,
            )
            rows = db.query(Booking).filter(Booking.room_id == room.id).count()

        created = [r for r in results if isinstance(r, BookingDTO)]
        rejected = [r for r in results if isinstance(r, HTTPException)]
        assert len(created) == 1
        assert len(rejected) == 1
        assert rejected[0].status_code == 409
        assert rejected[0].detail["reason"] == "website_booking_conflict"
        assert rows == 1
