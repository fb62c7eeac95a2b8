"""Tests for availability checks against bookings, blocks and the live Airbnb feed."""

from datetime import date

import pytest

from app.domain.models.blocked_date import BlockedDate
from app.domain.models.booking import Booking
from app.services.availability_service import (
    AvailabilityReason,
    AvailabilityService,
    check_airbnb_feed,
    ranges_overlap,
)
from conftest import make_feed, vevent

ROOM_ID = 1


def _add_booking(db, start, end, status="confirmed", source="website", room_id=ROOM_ID):
    booking = Booking(
        room_id=room_id,
        check_in_date=start,
        check_out_date=end,
        guest_name="Existing Guest",
        booking_status=status,
        payment_status="paid",
        booking_source=source,
    )
    db.add(booking)
    db.flush()
    return booking


def _add_block(db, start, end, source="manual", room_id=ROOM_ID):
    blocked = BlockedDate(room_id=room_id, start_date=start, end_date=end, reason="Closed", source=source)
    db.add(blocked)
    db.flush()
    return blocked


class TestRangesOverlap:
    @pytest.mark.parametrize(
        "request_range, expected",
        [
            ((date(2024, 1, 8), date(2024, 1, 10)), False),  # 체크아웃 날 체크인
            ((date(2024, 1, 3), date(2024, 1, 5)), False),   # 체크인 날 체크아웃
            ((date(2024, 1, 7), date(2024, 1, 9)), True),
            ((date(2024, 1, 4), date(2024, 1, 9)), True),
            ((date(2024, 1, 6), date(2024, 1, 7)), True),
        ],
    )
    def test_half_open_ranges(self, request_range, expected):
        assert ranges_overlap(*request_range, date(2024, 1, 5), date(2024, 1, 8)) is expected


class TestAvailabilityService:
    def test_same_day(self, db):
        result = AvailabilityService(db).check(ROOM_ID, date(2024, 1, 5), date(2024, 1, 5))
        assert result.available is False
        assert result.reason == AvailabilityReason.SAME_DAY_CHECKIN_CHECKOUT

    def test_reversed_range(self, db):
        result = AvailabilityService(db).check(ROOM_ID, date(2024, 1, 8), date(2024, 1, 5))
        assert result.available is False
        assert result.reason == AvailabilityReason.INVALID_DATE_RANGE

    def test_empty_calendar(self, db):
        result = AvailabilityService(db).check(ROOM_ID, date(2024, 1, 5), date(2024, 1, 8))
        assert result.available is True
        assert result.reason == AvailabilityReason.AVAILABLE

    def test_back_to_back_is_available(self, db):
        _add_booking(db, date(2024, 1, 5), date(2024, 1, 8))
        service = AvailabilityService(db)
        assert service.check(ROOM_ID, date(2024, 1, 8), date(2024, 1, 10)).available is True
        assert service.check(ROOM_ID, date(2024, 1, 3), date(2024, 1, 5)).available is True

    def test_booking_conflict(self, db):
        booking = _add_booking(db, date(2024, 1, 5), date(2024, 1, 8))
        result = AvailabilityService(db).check(ROOM_ID, date(2024, 1, 7), date(2024, 1, 9))
        assert result.available is False
        assert result.reason == AvailabilityReason.WEBSITE_BOOKING_CONFLICT
        assert result.conflicts[0]["id"] == booking.id

    def test_synced_airbnb_booking_conflicts(self, db):
        _add_booking(db, date(2024, 1, 5), date(2024, 1, 8), source="airbnb")
        result = AvailabilityService(db).check(ROOM_ID, date(2024, 1, 4), date(2024, 1, 9))
        assert result.reason == AvailabilityReason.WEBSITE_BOOKING_CONFLICT
        assert result.conflicts[0]["source"] == "airbnb"

    def test_pending_booking_conflicts(self, db):
        _add_booking(db, date(2024, 1, 5), date(2024, 1, 8), status="pending")
        assert AvailabilityService(db).check(ROOM_ID, date(2024, 1, 6), date(2024, 1, 7)).available is False

    def test_cancelled_booking_ignored(self, db):
        _add_booking(db, date(2024, 1, 5), date(2024, 1, 8), status="cancelled")
        assert AvailabilityService(db).check(ROOM_ID, date(2024, 1, 6), date(2024, 1, 7)).available is True

    @pytest.mark.parametrize("source", ["manual", "airbnb_blocked"])
    def test_blocked_conflict(self, db, source):
        _add_block(db, date(2024, 2, 1), date(2024, 2, 4), source=source)
        result = AvailabilityService(db).check(ROOM_ID, date(2024, 2, 3), date(2024, 2, 6))
        assert result.available is False
        assert result.reason == AvailabilityReason.BLOCKED_DATE_CONFLICT
        assert result.conflicts[0]["source"] == source

    def test_other_room_does_not_conflict(self, db):
        _add_booking(db, date(2024, 1, 5), date(2024, 1, 8), room_id=2)
        _add_block(db, date(2024, 1, 5), date(2024, 1, 8), room_id=2)
        assert AvailabilityService(db).check(ROOM_ID, date(2024, 1, 5), date(2024, 1, 8)).available is True


def _fetcher(body=None, error=None):
    async def fetch(url):
        if error is not None:
            raise error
        return body
    return fetch


LIVE_FEED = make_feed(
    vevent("r@airbnb.com", date(2024, 3, 1), date(2024, 3, 4), "Reserved"),
    vevent("b@airbnb.com", date(2024, 3, 10), date(2024, 3, 12), "Airbnb (Not available)"),
)


class TestLiveFeedCheck:
    async def test_no_url(self):
        result = await check_airbnb_feed(date(2024, 3, 1), date(2024, 3, 2), None, _fetcher(LIVE_FEED))
        assert result.available is True
        assert result.reason == AvailabilityReason.NO_AIRBNB_SYNC

    async def test_booking_conflict(self):
        result = await check_airbnb_feed(date(2024, 3, 3), date(2024, 3, 5), "https://x/ical", _fetcher(LIVE_FEED))
        assert result.available is False
        assert result.reason == AvailabilityReason.AIRBNB_BOOKING_CONFLICT
        assert result.conflicts[0]["uid"] == "r@airbnb.com"

    async def test_blocked_conflict(self):
        result = await check_airbnb_feed(date(2024, 3, 11), date(2024, 3, 13), "https://x/ical", _fetcher(LIVE_FEED))
        assert result.reason == AvailabilityReason.AIRBNB_BLOCKED_DATES

    async def test_free_dates(self):
        result = await check_airbnb_feed(date(2024, 3, 4), date(2024, 3, 10), "https://x/ical", _fetcher(LIVE_FEED))
        assert result.available is True
        assert result.reason == AvailabilityReason.AVAILABLE

    async def test_fetch_failure_is_permissive(self):
        result = await check_airbnb_feed(
            date(2024, 3, 1), date(2024, 3, 3), "https://x/ical", _fetcher(error=RuntimeError("down"))
        )
        assert result.available is True
        assert result.reason == AvailabilityReason.AIRBNB_CHECK_FAILED

    async def test_invalid_range_still_rejected(self):
        result = await check_airbnb_feed(date(2024, 3, 1), date(2024, 3, 1), "https://x/ical", _fetcher(LIVE_FEED))
        assert result.reason == AvailabilityReason.SAME_DAY_CHECKIN_CHECKOUT
