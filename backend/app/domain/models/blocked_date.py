"""
Blocked Date Model

예약 불가 기간
- manual: 관리자가 직접 막은 기간 (동기화가 절대 건드리지 않음)
- airbnb_blocked: Airbnb iCal 에서 가져온 차단 (동기화가 소유)
"""
from __future__ import annotations

from datetime import datetime, date
from enum import Enum

from sqlalchemy import String, Integer, Date, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class BlockedDateSource(str, Enum):
    MANUAL = "manual"
    AIRBNB_BLOCKED = "airbnb_blocked"


class BlockedDate(Base):
    """
    차단 기간

    - room_id: 객실 ID
    - start_date ~ end_date: [start, end) 반개구간
    - reason / notes: 표시용 사유 (Airbnb: "Airbnb Blocked" / "Synced from Airbnb: ...")
    - source: manual | airbnb_blocked
    """

    __tablename__ = "blocked_dates"

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
    )

    room_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    end_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    reason: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    source: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=BlockedDateSource.MANUAL.value,
    )

    # iCal VEVENT UID (참고용)
    external_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    __table_args__ = (
        Index("idx_blocked_dates_room_range", "room_id", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<BlockedDate {self.room_id} {self.start_date}~{self.end_date} ({self.source})>"
