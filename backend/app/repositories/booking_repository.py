"""
Booking Repository

예약 조회/생성/수정
- 객실별 Airbnb 예약 조회 (동기화 비교용)
- 날짜 범위와 겹치는 활성 예약 조회 (가용성 체크용)
"""
from __future__ import annotations

from datetime import datetime, date
from typing import Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from app.domain.models.booking import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingSource,
)


class BookingRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: int) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    def list_for_room(
        self,
        room_id: int,
        *,
        source: Optional[BookingSource] = None,
    ) -> Sequence[Booking]:
        stmt = select(Booking).where(Booking.room_id == room_id)
        if source is not None:
            stmt = stmt.where(Booking.booking_source == source.value)
        stmt = stmt.order_by(Booking.check_in_date, Booking.id)
        return self.db.execute(stmt).scalars().all()

    def list_airbnb_for_room(self, room_id: int) -> Sequence[Booking]:
        return self.list_for_room(room_id, source=BookingSource.AIRBNB)

    def list_active(
        self,
        *,
        room_id: Optional[int] = None,
        source: Optional[BookingSource] = None,
    ) -> Sequence[Booking]:
        stmt = select(Booking).where(Booking.booking_status.in_(ACTIVE_BOOKING_STATUSES))
        if room_id is not None:
            stmt = stmt.where(Booking.room_id == room_id)
        if source is not None:
            stmt = stmt.where(Booking.booking_source == source.value)
        stmt = stmt.order_by(Booking.check_in_date, Booking.id)
        return self.db.execute(stmt).scalars().all()

    def find_overlapping(
        self,
        room_id: int,
        start: date,
        end: date,
    ) -> Sequence[Booking]:
        """[start, end) 와 겹치는 활성(confirmed/pending) 예약"""
        stmt = (
            select(Booking)
            .where(
                Booking.room_id == room_id,
                Booking.booking_status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.check_in_date < end,
                Booking.check_out_date > start,
            )
            .order_by(Booking.check_in_date, Booking.id)
        )
        return self.db.execute(stmt).scalars().all()

    def create(self, **fields) -> Booking:
        booking = Booking(**fields)
        self.db.add(booking)
        self.db.flush()
        return booking

    def update(self, booking: Booking, **fields) -> Booking:
        for key, value in fields.items():
            if hasattr(booking, key):
                setattr(booking, key, value)
        booking.updated_at = datetime.utcnow()
        self.db.flush()
        return booking

    def delete_airbnb_for_room(self, room_id: int) -> int:
        """연동 해제 시 Airbnb 예약 일괄 삭제"""
        result = self.db.execute(
            delete(Booking).where(
                Booking.room_id == room_id,
                Booking.booking_source == BookingSource.AIRBNB.value,
            )
        )
        return result.rowcount or 0
