"""
Availability Service

객실 가용성 체크 (DB 기준)
- [check_in, check_out) 반개구간, 체크아웃 날 = 다음 게스트 체크인 가능
- confirmed/pending 예약 또는 차단(출처 무관)과 겹치면 불가
- 선택: Airbnb 피드를 직접 받아서 한번 더 확인 (check_airbnb_feed)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from app.repositories.blocked_date_repository import BlockedDateRepository
from app.repositories.booking_repository import BookingRepository
from app.services.ical_event_classifier import partition_events
from app.services.ical_parser import tokenize_ical

logger = logging.getLogger(__name__)


class AvailabilityReason(str, Enum):
    SAME_DAY_CHECKIN_CHECKOUT = "same_day_checkin_checkout"
    INVALID_DATE_RANGE = "invalid_date_range"
    WEBSITE_BOOKING_CONFLICT = "website_booking_conflict"
    BLOCKED_DATE_CONFLICT = "blocked_date_conflict"
    AVAILABLE = "available"
    # Airbnb 피드 직접 확인
    NO_AIRBNB_SYNC = "no_airbnb_sync"
    AIRBNB_BOOKING_CONFLICT = "airbnb_booking_conflict"
    AIRBNB_BLOCKED_DATES = "airbnb_blocked_dates"
    AIRBNB_CHECK_FAILED = "airbnb_check_failed"


@dataclass
class AvailabilityResult:
    available: bool
    reason: AvailabilityReason
    conflicts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "reason": self.reason.value,
            "conflicts": list(self.conflicts),
        }


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """반개구간 [a_start, a_end) 와 [b_start, b_end) 가 겹치는지"""
    return a_start < b_end and a_end > b_start


def validate_range(check_in: date, check_out: date) -> Optional[AvailabilityResult]:
    if check_in == check_out:
        return AvailabilityResult(False, AvailabilityReason.SAME_DAY_CHECKIN_CHECKOUT)
    if check_out < check_in:
        return AvailabilityResult(False, AvailabilityReason.INVALID_DATE_RANGE)
    return None


class AvailabilityService:
    def __init__(self, db: Session):
        self.db = db
        self.bookings = BookingRepository(db)
        self.blocked_dates = BlockedDateRepository(db)

    def check(self, room_id: int, check_in: date, check_out: date) -> AvailabilityResult:
        """
        DB 기준 가용성 확인 (예약 → 차단 순서)

        bookings 테이블에는 동기화된 Airbnb 예약도 있으므로, 그것과 겹쳐도
        reason 은 website_booking_conflict 다. 출처는 conflicts[].source
        ("website" / "airbnb") 로 구분한다.
        """
        invalid = validate_range(check_in, check_out)
        if invalid is not None:
            return invalid

        bookings = self.bookings.find_overlapping(room_id, check_in, check_out)
        if bookings:
            return AvailabilityResult(
                False,
                AvailabilityReason.WEBSITE_BOOKING_CONFLICT,
                [
                    {
                        "type": "booking",
                        "id": b.id,
                        "source": b.booking_source,
                        "status": b.booking_status,
                        "start_date": b.check_in_date.isoformat(),
                        "end_date": b.check_out_date.isoformat(),
                        "guest_name": b.guest_name,
                    }
                    for b in bookings
                ],
            )

        blocked = self.blocked_dates.find_overlapping(room_id, check_in, check_out)
        if blocked:
            return AvailabilityResult(
                False,
                AvailabilityReason.BLOCKED_DATE_CONFLICT,
                [
                    {
                        "type": "blocked_date",
                        "id": b.id,
                        "source": b.source,
                        "start_date": b.start_date.isoformat(),
                        "end_date": b.end_date.isoformat(),
                        "reason": b.reason,
                    }
                    for b in blocked
                ],
            )

        return AvailabilityResult(True, AvailabilityReason.AVAILABLE)


async def check_airbnb_feed(
    check_in: date,
    check_out: date,
    ical_url: Optional[str],
    fetcher: Callable[[str], Awaitable[str]],
) -> AvailabilityResult:
    """
    Airbnb 피드를 지금 받아서 직접 겹침 확인 (DB 동기화 지연 보완용).

    Args:
        ical_url: 객실의 Airbnb iCal URL (없으면 no_airbnb_sync)
        fetcher: url → iCal 텍스트 (보통 IcalService.fetch_ical)

    받아오기/파싱이 실패하면 available=True (airbnb_check_failed).
    이 경로만 관대하게 처리한다. DB 기준 체크는 따로 이미 했다는 전제.
    """
    invalid = validate_range(check_in, check_out)
    if invalid is not None:
        return invalid

    if not ical_url:
        return AvailabilityResult(True, AvailabilityReason.NO_AIRBNB_SYNC)

    try:
        ical_text = await fetcher(ical_url)
        events = tokenize_ical(ical_text)
    except Exception as e:
        logger.warning(f"AVAILABILITY: Airbnb feed check failed for {ical_url}: {e}")
        return AvailabilityResult(True, AvailabilityReason.AIRBNB_CHECK_FAILED)

    bookings, blocked = partition_events(events)

    booking_conflicts = [
        c for c in bookings
        if ranges_overlap(check_in, check_out, c.event.start_date, c.event.end_date)
    ]
    if booking_conflicts:
        return AvailabilityResult(
            False,
            AvailabilityReason.AIRBNB_BOOKING_CONFLICT,
            [_event_conflict(c) for c in booking_conflicts],
        )

    blocked_conflicts = [
        c for c in blocked
        if ranges_overlap(check_in, check_out, c.event.start_date, c.event.end_date)
    ]
    if blocked_conflicts:
        return AvailabilityResult(
            False,
            AvailabilityReason.AIRBNB_BLOCKED_DATES,
            [_event_conflict(c) for c in blocked_conflicts],
        )

    return AvailabilityResult(True, AvailabilityReason.AVAILABLE)


def _event_conflict(classified) -> dict[str, Any]:
    event = classified.event
    return {
        "type": classified.classification.type.value,
        "uid": event.uid,
        "summary": event.summary,
        "start_date": event.start_date.isoformat(),
        "end_date": event.end_date.isoformat(),
        "classification_reason": classified.classification.reason.value,
    }
