"""Tests for reconciling parsed Airbnb events against persisted rows."""

from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from app.domain.models.blocked_date import BlockedDate, BlockedDateSource
from app.domain.models.booking import Booking, BookingSource
from app.services.calendar_reconciler import CalendarReconciler, VanishedBookingPolicy
from app.services.ical_event_classifier import partition_events
from app.services.ical_parser import tokenize_ical
from conftest import make_feed, vevent

ROOM_ID = 1


def _reconcile(db, feed, policy=VanishedBookingPolicy.KEEP, room_id=ROOM_ID):
    bookings, blocked = partition_events(tokenize_ical(feed))
    result = CalendarReconciler(db, vanished_booking_policy=policy).reconcile(room_id, bookings, blocked)
    db.flush()
    return result


def _blocked(db, room_id=ROOM_ID):
    return (
        db.query(BlockedDate)
        .filter(BlockedDate.room_id == room_id)
        .order_by(BlockedDate.start_date, BlockedDate.id)
        .all()
    )


def _bookings(db, room_id=ROOM_ID):
    return db.query(Booking).filter(Booking.room_id == room_id).order_by(Booking.check_in_date).all()


def _snapshot(db, room_id=ROOM_ID):
    return {
        "blocked": sorted(
            (b.start_date, b.end_date, b.source, b.reason, b.notes) for b in _blocked(db, room_id)
        ),
        "bookings": sorted(
            (b.external_booking_id, b.check_in_date, b.check_out_date, b.booking_status, b.guest_name)
            for b in _bookings(db, room_id)
        ),
    }


FEED_A = make_feed(
    vevent(
        "res-1@airbnb.com",
        date(2024, 6, 1),
        date(2024, 6, 4),
        "Reserved",
        description="Reservation URL: https://www.airbnb.com/hosting/reservations/details/HMAAA111",
    ),
    vevent("blk-1@airbnb.com", date(2024, 6, 10), date(2024, 6, 12), "Airbnb (Not available)"),
    vevent("blk-2@airbnb.com", date(2024, 6, 20), date(2024, 6, 22), "Airbnb (Not available)"),
)

FEED_B = make_feed(
    vevent(
        "res-1@airbnb.com",
        date(2024, 6, 2),
        date(2024, 6, 5),
        "Reserved",
        description="Reservation URL: https://www.airbnb.com/hosting/reservations/details/HMAAA111",
    ),
    vevent("blk-2@airbnb.com", date(2024, 6, 20), date(2024, 6, 22), "Airbnb (Not available)"),
    vevent("blk-3@airbnb.com", date(2024, 7, 1), date(2024, 7, 3), "Maintenance (host)"),
)


class TestInitialSync:
    def test_creates_bookings_and_blocks(self, db):
        result = _reconcile(db, FEED_A)

        assert result.bookings_created == 1
        assert result.blocked_created == 2
        assert result.failed_writes == 0

        (booking,) = _bookings(db)
        assert booking.booking_source == BookingSource.AIRBNB.value
        assert booking.external_booking_id == "HMAAA111"
        assert booking.booking_status == "confirmed"
        assert booking.payment_status == "paid"
        assert booking.guest_name == "Airbnb Guest"
        assert booking.check_in_time == "1:00 PM"
        assert booking.check_out_time == "10:00 AM"
        assert booking.sync_status == "synced"
        assert booking.external_platform_data["uid"] == "res-1@airbnb.com"
        assert booking.external_platform_data["classification_reason"] == "reserved_booking"
        assert booking.external_platform_data["data_limitations"]["email"] is True

        blocked = _blocked(db)
        assert [(b.start_date, b.end_date) for b in blocked] == [
            (date(2024, 6, 10), date(2024, 6, 12)),
            (date(2024, 6, 20), date(2024, 6, 22)),
        ]
        assert all(b.source == BlockedDateSource.AIRBNB_BLOCKED.value for b in blocked)
        assert blocked[0].reason == "Airbnb Blocked"
        assert blocked[0].notes == "Synced from Airbnb: Airbnb (Not available)"

    def test_room_check_in_times_are_used(self, db, room):
        _reconcile(db, FEED_A, room_id=room.id)
        (booking,) = _bookings(db, room_id=room.id)
        assert booking.check_in_time == "2:00 PM"
        assert booking.check_out_time == "11:00 AM"

    def test_status_mapping(self, db):
        feed = make_feed(
            vevent("t@airbnb.com", date(2024, 8, 1), date(2024, 8, 3), "Reserved", status="TENTATIVE"),
            vevent("c@airbnb.com", date(2024, 8, 5), date(2024, 8, 7), "Reserved", status="CANCELLED"),
        )
        _reconcile(db, feed)
        statuses = {b.external_booking_id: (b.booking_status, b.payment_status) for b in _bookings(db)}
        assert statuses == {
            "t@airbnb.com": ("pending", "pending"),
            "c@airbnb.com": ("cancelled", "refunded"),
        }


class TestIdempotence:
    def test_same_feed_twice_writes_nothing(self, db):
        _reconcile(db, FEED_A)
        before = _snapshot(db)

        result = _reconcile(db, FEED_A)

        assert result.total_writes == 0
        assert _snapshot(db) == before

    def test_duplicate_events_in_feed_collapse(self, db):
        block = vevent("dup@airbnb.com", date(2024, 6, 10), date(2024, 6, 12), "Airbnb (Not available)")
        booking = vevent("res@airbnb.com", date(2024, 6, 1), date(2024, 6, 3), "Reserved")
        feed = make_feed(block, block, booking, booking)

        result = _reconcile(db, feed)
        assert result.blocked_created == 1
        assert result.bookings_created == 1
        assert _reconcile(db, feed).total_writes == 0


class TestConvergence:
    def test_resync_matches_fresh_sync(self, db):
        _reconcile(db, FEED_A)
        result = _reconcile(db, FEED_B)

        assert result.blocked_deleted == 1
        assert result.blocked_created == 1
        assert result.bookings_updated == 1

        # 빈 객실에 FEED_B 만 바로 적용한 결과와 같아야 함
        _reconcile(db, FEED_B, room_id=2)
        assert _snapshot(db) == _snapshot(db, room_id=2)

    def test_unblocked_upstream_is_deleted_then_recreated(self, db):
        _reconcile(db, FEED_A)
        result = _reconcile(db, make_feed())
        assert result.blocked_deleted == 2
        assert _blocked(db) == []

        result = _reconcile(db, FEED_A)
        assert result.blocked_created == 2
        assert len(_blocked(db)) == 2

    def test_changed_guest_name_updates(self, db):
        _reconcile(db, make_feed(vevent("g@airbnb.com", date(2024, 9, 1), date(2024, 9, 3), "Reserved")))
        result = _reconcile(db, make_feed(vevent("g@airbnb.com", date(2024, 9, 1), date(2024, 9, 3), "Jane Doe")))
        assert result.bookings_updated == 1
        assert _bookings(db)[0].guest_name == "Jane Doe"


class TestOwnership:
    def test_manual_blocks_survive(self, db):
        manual = BlockedDate(
            room_id=ROOM_ID,
            start_date=date(2024, 6, 10),
            end_date=date(2024, 6, 12),
            reason="Renovation",
            source=BlockedDateSource.MANUAL.value,
        )
        db.add(manual)
        db.flush()

        _reconcile(db, FEED_A)
        _reconcile(db, make_feed())

        remaining = _blocked(db)
        assert [(b.id, b.source) for b in remaining] == [(manual.id, "manual")]

    def test_website_bookings_untouched(self, db):
        website = Booking(
            room_id=ROOM_ID,
            check_in_date=date(2024, 6, 2),
            check_out_date=date(2024, 6, 3),
            guest_name="Walk In",
            booking_status="confirmed",
            payment_status="paid",
            booking_source=BookingSource.WEBSITE.value,
        )
        db.add(website)
        db.flush()

        result = _reconcile(db, FEED_A, policy=VanishedBookingPolicy.CANCEL)

        assert website.booking_status == "confirmed"
        # 겹침은 막지 않고 보고만 함
        assert [c["booking_id"] for c in result.conflicts] == [website.id]

    def test_other_rooms_untouched(self, db):
        _reconcile(db, FEED_A, room_id=2)
        _reconcile(db, make_feed(), room_id=ROOM_ID)
        assert len(_blocked(db, room_id=2)) == 2


class TestVanishedBookings:
    def test_keep_policy_leaves_booking(self, db):
        _reconcile(db, FEED_A)
        result = _reconcile(db, make_feed())
        assert result.bookings_cancelled == 0
        assert _bookings(db)[0].booking_status == "confirmed"

    def test_cancel_policy_cancels_once(self, db):
        _reconcile(db, FEED_A, policy=VanishedBookingPolicy.CANCEL)
        result = _reconcile(db, make_feed(), policy=VanishedBookingPolicy.CANCEL)
        assert result.bookings_cancelled == 1

        booking = _bookings(db)[0]
        assert booking.booking_status == "cancelled"
        assert booking.payment_status == "refunded"

        assert _reconcile(db, make_feed(), policy=VanishedBookingPolicy.CANCEL).total_writes == 0


class TestWriteFailures:
    def test_failed_write_is_skipped(self, db, monkeypatch):
        reconciler = CalendarReconciler(db)
        original_create = reconciler.blocked_dates.create

        def flaky_create(**fields):
            if fields["start_date"] == date(2024, 6, 10):
                raise SQLAlchemyError("simulated failure")
            return original_create(**fields)

        monkeypatch.setattr(reconciler.blocked_dates, "create", flaky_create)

        bookings, blocked = partition_events(tokenize_ical(FEED_A))
        result = reconciler.reconcile(ROOM_ID, bookings, blocked)

        assert result.failed_writes == 1
        assert result.blocked_created == 1
        assert result.bookings_created == 1
        assert [b.start_date for b in _blocked(db)] == [date(2024, 6, 20)]

        # 다음 동기화에서 빠진 행이 채워짐
        retry = _reconcile(db, FEED_A)
        assert retry.blocked_created == 1
        assert len(_blocked(db)) == 2
