"""
Booking: 객실 예약

- 웹사이트 예약(booking_source=website): 관리자/게스트가 직접 생성
- Airbnb 예약(booking_source=airbnb): iCal 동기화가 생성/수정 (external_booking_id 기준)
"""
from __future__ import annotations

from datetime import datetime, date
from typing import Any, Optional
from enum import Enum

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    Date,
    DateTime,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class BookingStatus(str, Enum):
    """예약 상태"""
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """결제 상태"""
    PAID = "paid"
    PENDING = "pending"
    REFUNDED = "refunded"


class BookingSource(str, Enum):
    """예약 경로"""
    WEBSITE = "website"
    AIRBNB = "airbnb"


# 달력을 점유하는 상태 (취소 제외)
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.CONFIRMED.value,
    BookingStatus.PENDING.value,
)


class Booking(Base):
    """
    예약 테이블

    - [check_in_date, check_out_date) 반개구간 (체크아웃 날은 숙박하지 않음)
    - Airbnb 예약은 동기화만 수정한다 (관리자 직접 수정 X)
    """
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    room_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # 날짜
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_in_time: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)   # "1:00 PM"
    check_out_time: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # "10:00 AM"

    # 게스트 정보
    guest_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    num_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 금액/상태
    total_amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    booking_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.CONFIRMED.value
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )

    # 출처 / 외부 연동
    booking_source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingSource.WEBSITE.value
    )
    external_booking_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_platform_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    sync_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # 메타
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_bookings_room_dates", "room_id", "check_in_date", "check_out_date"),
        Index("idx_bookings_room_external", "room_id", "booking_source", "external_booking_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.booking_status in ACTIVE_BOOKING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, room={self.room_id}, "
            f"source={self.booking_source}, status={self.booking_status}, "
            f"check_in={self.check_in_date}, check_out={self.check_out_date})>"
        )
