from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


DEFAULT_CHECK_IN_TIME = "1:00 PM"
DEFAULT_CHECK_OUT_TIME = "10:00 AM"


class Room(Base):
    """
    객실 (동기화/피드에서 읽기만 하는 최소 컬럼)

    - check_in_time / check_out_time: Airbnb 예약 생성 시 기본 시각
    - name: 외부 달력 피드 표시 이름
    """

    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    room_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    check_in_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    check_out_time: Mapped[str | None] = mapped_column(String(32), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<Room {self.id} {self.name}>"
