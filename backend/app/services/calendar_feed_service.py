"""
Calendar Feed Service

Airbnb 등 외부 캘린더가 가져갈 수 있는 iCal 피드 생성 (icalendar)
- 웹사이트 예약 (confirmed / pending) → "BOOKED - <객실> - <게스트>"
- manual 차단 → "BLOCKED - <객실>"
- Airbnb 에서 가져온 행은 넣지 않음 (Airbnb 로 되돌려 보내면 무한 반복)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from icalendar import Calendar, Event
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.models.blocked_date import BlockedDate, BlockedDateSource
from app.domain.models.booking import Booking, BookingSource, BookingStatus
from app.repositories.blocked_date_repository import BlockedDateRepository
from app.repositories.booking_repository import BookingRepository
from app.repositories.room_repository import RoomRepository

logger = logging.getLogger(__name__)


PRODID = "-//Homestay Booking System//Website Calendar//EN"
PUBLISHED_TTL = "PT5M"


class CalendarFeedService:
    def __init__(self, db: Session):
        self.db = db
        self.bookings = BookingRepository(db)
        self.blocked_dates = BlockedDateRepository(db)
        self.rooms = RoomRepository(db)

    def build_calendar(self, room_id: Optional[int] = None) -> Calendar:
        """
        피드 캘린더 생성

        Args:
            room_id: 주면 해당 객실만 (객실별 Airbnb import 용), 없으면 전체
        """
        bookings = self.bookings.list_active(room_id=room_id, source=BookingSource.WEBSITE)
        if room_id is not None:
            blocked = self.blocked_dates.list_for_room(room_id, source=BlockedDateSource.MANUAL)
        else:
            blocked = self.blocked_dates.list_by_source(BlockedDateSource.MANUAL)

        room_ids = {b.room_id for b in bookings} | {b.room_id for b in blocked}
        room_names = self.rooms.get_names(sorted(room_ids))

        cal = Calendar()
        cal.add("prodid", PRODID)
        cal.add("version", "2.0")
        cal.add("calscale", "GREGORIAN")
        cal.add("method", "PUBLISH")
        cal.add("x-wr-calname", settings.CALENDAR_FEED_NAME)
        cal.add("x-wr-caldesc", f"Website bookings and blocked dates for {settings.CALENDAR_FEED_LOCATION}")
        cal.add("x-wr-timezone", settings.CALENDAR_FEED_TIMEZONE)
        cal.add("x-published-ttl", PUBLISHED_TTL)

        stamp = datetime.now(timezone.utc)
        for booking in bookings:
            cal.add_component(self._booking_event(booking, room_names, stamp))
        for row in blocked:
            cal.add_component(self._blocked_event(row, room_names, stamp))

        logger.debug(
            f"CALENDAR_FEED: room={room_id or 'all'} bookings={len(bookings)} blocked={len(blocked)}"
        )
        return cal

    def render(self, room_id: Optional[int] = None) -> bytes:
        return self.build_calendar(room_id).to_ical()

    def _booking_event(self, booking: Booking, room_names: dict[int, str], stamp: datetime) -> Event:
        room_name = _room_name(room_names, booking.room_id)
        confirmed = booking.booking_status == BookingStatus.CONFIRMED.value

        event = Event()
        event.add("uid", f"booking-{booking.id}@{settings.CALENDAR_FEED_UID_DOMAIN}")
        event.add("dtstart", booking.check_in_date)
        event.add("dtend", booking.check_out_date)
        event.add("dtstamp", stamp)
        event.add("summary", f"BOOKED - {room_name} - {booking.guest_name}")
        event.add(
            "description",
            f"Website booking for {room_name}. Guest: {booking.guest_name}. "
            f"Status: {booking.booking_status.upper()}",
        )
        event.add("status", "CONFIRMED" if confirmed else "TENTATIVE")
        event.add("location", settings.CALENDAR_FEED_LOCATION)
        event.add("categories", ["BOOKING"])
        return event

    def _blocked_event(self, blocked: BlockedDate, room_names: dict[int, str], stamp: datetime) -> Event:
        room_name = _room_name(room_names, blocked.room_id)

        event = Event()
        event.add("uid", f"blocked-{blocked.id}@{settings.CALENDAR_FEED_UID_DOMAIN}")
        event.add("dtstart", blocked.start_date)
        event.add("dtend", blocked.end_date)
        event.add("dtstamp", stamp)
        event.add("summary", f"BLOCKED - {room_name}")
        event.add(
            "description",
            f"Manually blocked dates for {room_name}. Reason: {blocked.reason or 'Not available'}",
        )
        event.add("status", "CONFIRMED")
        event.add("location", settings.CALENDAR_FEED_LOCATION)
        event.add("categories", ["BLOCKED"])
        return event


def _room_name(room_names: dict[int, str], room_id: int) -> str:
    return room_names.get(room_id) or f"Room {room_id}"
