"""
Calendar Reconciler

새로 파싱한 Airbnb 이벤트와 DB 에 저장된 Airbnb 행을 비교해서
INSERT / UPDATE / DELETE 를 결정한다 (객실 단위).

- 차단(blocked_dates, source=airbnb_blocked)
    key = (start_date, end_date)
    피드에 없음 → DELETE (Airbnb 에서 차단 해제된 날짜)
    DB 에 없음  → INSERT
    둘 다 있음  → reason/notes 가 다를 때만 UPDATE
- 예약(bookings, booking_source=airbnb)
    key = external_booking_id (예약 코드 우선, 없으면 UID)
    DB 에 없음  → INSERT
    날짜/상태/게스트 이름이 바뀜 → UPDATE
    피드에서 사라짐 → VanishedBookingPolicy 에 따름 (기본: 그대로 둠)

같은 피드로 다시 돌리면 쓰기 0 건 (재시도/중복 실행 안전).
쓰기 하나가 실패해도 SAVEPOINT 만 롤백하고 다음 이벤트로 진행.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.models.blocked_date import BlockedDate, BlockedDateSource
from app.domain.models.booking import (
    Booking,
    BookingSource,
    BookingStatus,
    PaymentStatus,
)
from app.domain.models.room import DEFAULT_CHECK_IN_TIME, DEFAULT_CHECK_OUT_TIME
from app.repositories.blocked_date_repository import BlockedDateRepository
from app.repositories.booking_repository import BookingRepository
from app.repositories.room_repository import RoomRepository
from app.services.airbnb_guest_info_extractor import extract_guest_info
from app.services.ical_event_classifier import ClassificationReason, ClassifiedEvent

logger = logging.getLogger(__name__)


AIRBNB_BLOCKED_REASON = "Airbnb Blocked"
SYNCED_NOTES_PREFIX = "Synced from Airbnb:"


class VanishedBookingPolicy(str, Enum):
    """피드에서 사라진 Airbnb 예약 처리 방식"""
    KEEP = "keep"      # 그대로 둠 (Airbnb 는 취소 예약을 CANCELLED 이벤트로 남기는 편)
    CANCEL = "cancel"  # cancelled 로 변경


# ─────────────────────────────────────────────────────────────
# 피드 → 목표 상태
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DesiredBlockedDate:
    start_date: date
    end_date: date
    reason: str
    notes: str
    external_id: Optional[str] = None

    @property
    def key(self) -> tuple[date, date]:
        return (self.start_date, self.end_date)


@dataclass(frozen=True)
class DesiredBooking:
    external_booking_id: str
    check_in_date: date
    check_out_date: date
    booking_status: str
    payment_status: str
    guest_name: str
    num_guests: int
    email: str
    phone: str
    total_amount: float
    special_requests: str
    platform_data: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


def booking_status_for(status: str, reason: ClassificationReason) -> BookingStatus:
    status = (status or "").upper()
    if status == "CANCELLED" or reason == ClassificationReason.CANCELLED_STATUS:
        return BookingStatus.CANCELLED
    if status == "TENTATIVE" or reason == ClassificationReason.TENTATIVE_BOOKING:
        return BookingStatus.PENDING
    return BookingStatus.CONFIRMED


def payment_status_for(booking_status: BookingStatus) -> PaymentStatus:
    if booking_status == BookingStatus.CANCELLED:
        return PaymentStatus.REFUNDED
    if booking_status == BookingStatus.PENDING:
        return PaymentStatus.PENDING
    # Airbnb 가 결제 처리
    return PaymentStatus.PAID


def build_desired_blocked_dates(
    blocked_events: Sequence[ClassifiedEvent],
) -> dict[tuple[date, date], DesiredBlockedDate]:
    """같은 기간이 여러 번 나오면 첫 번째 것만 사용"""
    desired: dict[tuple[date, date], DesiredBlockedDate] = {}
    for classified in blocked_events:
        event = classified.event
        item = DesiredBlockedDate(
            start_date=event.start_date,
            end_date=event.end_date,
            reason=AIRBNB_BLOCKED_REASON,
            notes=f"{SYNCED_NOTES_PREFIX} {event.summary}".strip(),
            external_id=event.uid,
        )
        desired.setdefault(item.key, item)
    return desired


def build_desired_bookings(
    booking_events: Sequence[ClassifiedEvent],
) -> dict[str, DesiredBooking]:
    desired: dict[str, DesiredBooking] = {}
    for classified in booking_events:
        event = classified.event
        reason = classified.classification.reason
        info = extract_guest_info(event.summary, event.description, uid=event.uid)
        external_id = info.reservation_code or event.uid
        status = booking_status_for(event.status, reason)

        item = DesiredBooking(
            external_booking_id=external_id,
            check_in_date=event.start_date,
            check_out_date=event.end_date,
            booking_status=status.value,
            payment_status=payment_status_for(status).value,
            guest_name=info.guest_name,
            num_guests=info.num_guests,
            email=info.email,
            phone=info.phone,
            total_amount=info.total_amount,
            special_requests=info.special_requests,
            platform_data={
                "uid": event.uid,
                "uid_generated": event.uid_generated,
                "status": event.status,
                "summary": event.summary,
                "description": event.description,
                "classification_reason": reason.value,
                "room_info": info.room_info,
                "extracted_info": info.extracted_info,
                "data_limitations": info.data_limitations.to_dict(),
            },
        )
        if external_id in desired:
            logger.debug(f"RECONCILER: Duplicate booking key in feed ignored: {external_id}")
            continue
        desired[external_id] = item
    return desired


def booking_changed(existing: Booking, desired: DesiredBooking) -> bool:
    return (
        existing.check_in_date != desired.check_in_date
        or existing.check_out_date != desired.check_out_date
        or existing.booking_status != desired.booking_status
        or existing.guest_name != desired.guest_name
    )


# ─────────────────────────────────────────────────────────────
# 결과
# ─────────────────────────────────────────────────────────────

@dataclass
class ReconcileResult:
    """객실 하나의 동기화 결과 (쓰기 건수)"""
    room_id: int
    bookings_created: int = 0
    bookings_updated: int = 0
    bookings_cancelled: int = 0
    blocked_created: int = 0
    blocked_updated: int = 0
    blocked_deleted: int = 0
    failed_writes: int = 0
    # Airbnb 데이터와 겹치는 웹사이트 예약 (막지 않고 보고만 함)
    conflicts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_writes(self) -> int:
        return (
            self.bookings_created
            + self.bookings_updated
            + self.bookings_cancelled
            + self.blocked_created
            + self.blocked_updated
            + self.blocked_deleted
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "bookings_created": self.bookings_created,
            "bookings_updated": self.bookings_updated,
            "bookings_cancelled": self.bookings_cancelled,
            "blocked_created": self.blocked_created,
            "blocked_updated": self.blocked_updated,
            "blocked_deleted": self.blocked_deleted,
            "failed_writes": self.failed_writes,
            "total_writes": self.total_writes,
            "conflicts": list(self.conflicts),
        }


# ─────────────────────────────────────────────────────────────
# Reconciler
# ─────────────────────────────────────────────────────────────

class CalendarReconciler:
    """
    Airbnb 이벤트 ↔ DB 행 비교/반영

    순서: 차단 삭제 → 차단 추가 → 차단 수정 → 예약 추가/수정 → (정책) 사라진 예약
    트랜잭션으로 묶지 않는다. 중간에 죽어도 다음 동기화가 같은 결과로 수렴.
    """

    def __init__(
        self,
        db: Session,
        vanished_booking_policy: VanishedBookingPolicy = VanishedBookingPolicy.KEEP,
    ):
        self.db = db
        self.vanished_booking_policy = vanished_booking_policy
        self.bookings = BookingRepository(db)
        self.blocked_dates = BlockedDateRepository(db)
        self.rooms = RoomRepository(db)

    def reconcile(
        self,
        room_id: int,
        booking_events: Sequence[ClassifiedEvent],
        blocked_events: Sequence[ClassifiedEvent],
    ) -> ReconcileResult:
        result = ReconcileResult(room_id=room_id)
        self.reconcile_blocked_dates(room_id, blocked_events, result)
        self.reconcile_bookings(room_id, booking_events, result)

        if result.total_writes or result.failed_writes:
            logger.info(
                f"RECONCILER: room={room_id} "
                f"bookings(+{result.bookings_created} ~{result.bookings_updated} "
                f"x{result.bookings_cancelled}) "
                f"blocked(+{result.blocked_created} ~{result.blocked_updated} "
                f"-{result.blocked_deleted}) failed={result.failed_writes}"
            )
        else:
            logger.debug(f"RECONCILER: room={room_id} no changes")
        return result

    # --- 차단 ---

    def reconcile_blocked_dates(
        self,
        room_id: int,
        blocked_events: Sequence[ClassifiedEvent],
        result: ReconcileResult,
    ) -> None:
        desired = build_desired_blocked_dates(blocked_events)

        existing: dict[tuple[date, date], BlockedDate] = {}
        duplicates: list[BlockedDate] = []
        for row in self.blocked_dates.list_airbnb_for_room(room_id):
            key = (row.start_date, row.end_date)
            if key in existing:
                duplicates.append(row)
            else:
                existing[key] = row

        # 1) 피드에서 사라진 차단 삭제 (+ 예전 동기화가 남긴 중복 행)
        stale = [row for key, row in existing.items() if key not in desired] + duplicates
        for row in stale:
            if self._write(
                f"delete blocked {row.start_date}~{row.end_date} room={room_id}",
                lambda row=row: self.blocked_dates.delete(row),
            ):
                result.blocked_deleted += 1
            else:
                result.failed_writes += 1

        # 2) 새 차단 추가 / 사유 변경
        for key, item in desired.items():
            row = existing.get(key)
            if row is None:
                self._report_website_conflicts(room_id, item.start_date, item.end_date, item.notes, result)
                if self._write(
                    f"insert blocked {item.start_date}~{item.end_date} room={room_id}",
                    lambda item=item: self.blocked_dates.create(
                        room_id=room_id,
                        start_date=item.start_date,
                        end_date=item.end_date,
                        reason=item.reason,
                        notes=item.notes,
                        source=BlockedDateSource.AIRBNB_BLOCKED.value,
                        external_id=item.external_id,
                    ),
                ):
                    result.blocked_created += 1
                else:
                    result.failed_writes += 1
            elif row.reason != item.reason or row.notes != item.notes:
                if self._write(
                    f"update blocked {item.start_date}~{item.end_date} room={room_id}",
                    lambda row=row, item=item: self.blocked_dates.update(
                        row, reason=item.reason, notes=item.notes,
                    ),
                ):
                    result.blocked_updated += 1
                else:
                    result.failed_writes += 1

    # --- 예약 ---

    def reconcile_bookings(
        self,
        room_id: int,
        booking_events: Sequence[ClassifiedEvent],
        result: ReconcileResult,
    ) -> None:
        desired = build_desired_bookings(booking_events)

        existing: dict[str, Booking] = {}
        for row in self.bookings.list_airbnb_for_room(room_id):
            if row.external_booking_id:
                existing.setdefault(row.external_booking_id, row)

        check_in_time, check_out_time = self._room_times(room_id) if desired else (None, None)
        now = datetime.now(timezone.utc)

        for external_id, item in desired.items():
            row = existing.get(external_id)
            if row is None:
                if item.booking_status != BookingStatus.CANCELLED.value:
                    self._report_website_conflicts(
                        room_id, item.check_in_date, item.check_out_date, item.guest_name, result,
                    )
                if self._write(
                    f"insert booking {external_id} room={room_id}",
                    lambda item=item: self.bookings.create(
                        room_id=room_id,
                        check_in_date=item.check_in_date,
                        check_out_date=item.check_out_date,
                        check_in_time=check_in_time,
                        check_out_time=check_out_time,
                        guest_name=item.guest_name,
                        email=item.email,
                        phone=item.phone,
                        num_guests=item.num_guests,
                        total_amount=item.total_amount,
                        booking_status=item.booking_status,
                        payment_status=item.payment_status,
                        booking_source=BookingSource.AIRBNB.value,
                        external_booking_id=item.external_booking_id,
                        external_platform_data=item.platform_data,
                        special_requests=item.special_requests,
                        sync_status="synced",
                        last_sync_at=now,
                    ),
                ):
                    result.bookings_created += 1
                else:
                    result.failed_writes += 1
            elif booking_changed(row, item):
                if self._write(
                    f"update booking {external_id} room={room_id}",
                    lambda row=row, item=item: self.bookings.update(
                        row,
                        check_in_date=item.check_in_date,
                        check_out_date=item.check_out_date,
                        booking_status=item.booking_status,
                        payment_status=item.payment_status,
                        guest_name=item.guest_name,
                        external_platform_data=item.platform_data,
                        sync_status="synced",
                        last_sync_at=now,
                    ),
                ):
                    result.bookings_updated += 1
                else:
                    result.failed_writes += 1

        if self.vanished_booking_policy == VanishedBookingPolicy.CANCEL:
            for external_id, row in existing.items():
                if external_id in desired or row.booking_status == BookingStatus.CANCELLED.value:
                    continue
                if self._write(
                    f"cancel vanished booking {external_id} room={room_id}",
                    lambda row=row: self.bookings.update(
                        row,
                        booking_status=BookingStatus.CANCELLED.value,
                        payment_status=PaymentStatus.REFUNDED.value,
                        sync_status="removed_upstream",
                        last_sync_at=now,
                    ),
                ):
                    result.bookings_cancelled += 1
                else:
                    result.failed_writes += 1

    # --- helpers ---

    def _write(self, action: str, operation: Callable[[], Any]) -> bool:
        """쓰기 하나를 SAVEPOINT 로 감싸서 실행. 실패하면 로그만 남기고 False."""
        try:
            with self.db.begin_nested():
                operation()
        except SQLAlchemyError as e:
            logger.error(f"RECONCILER: Failed to {action}: {e}")
            return False
        return True

    def _room_times(self, room_id: int) -> tuple[str, str]:
        room = self.rooms.get(room_id)
        if room is None:
            return DEFAULT_CHECK_IN_TIME, DEFAULT_CHECK_OUT_TIME
        return (
            room.check_in_time or DEFAULT_CHECK_IN_TIME,
            room.check_out_time or DEFAULT_CHECK_OUT_TIME,
        )

    def _report_website_conflicts(
        self,
        room_id: int,
        start: date,
        end: date,
        label: str,
        result: ReconcileResult,
    ) -> None:
        """Airbnb 쪽 기간과 겹치는 웹사이트 예약이 있으면 결과에 기록 (막지는 않음)"""
        for booking in self.bookings.find_overlapping(room_id, start, end):
            if booking.booking_source != BookingSource.WEBSITE.value:
                continue
            logger.warning(
                f"RECONCILER: Airbnb '{label}' {start}~{end} overlaps website booking "
                f"id={booking.id} ({booking.check_in_date}~{booking.check_out_date}) room={room_id}"
            )
            result.conflicts.append({
                "airbnb_start": start.isoformat(),
                "airbnb_end": end.isoformat(),
                "airbnb_label": label,
                "booking_id": booking.id,
            })
