"""
CalendarSetting: 달력 관련 key-value 설정

- airbnb_room_<id>            → 객실별 Airbnb iCal URL
- airbnb_room_<id>_last_sync  → 마지막 동기화 시각(ISO) 또는 "ERROR: ..."
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


AIRBNB_ROOM_KEY_PREFIX = "airbnb_room_"
LAST_SYNC_KEY_SUFFIX = "_last_sync"
SYNC_ERROR_PREFIX = "ERROR:"


def airbnb_url_key(room_id: int) -> str:
    return f"{AIRBNB_ROOM_KEY_PREFIX}{room_id}"


def airbnb_last_sync_key(room_id: int) -> str:
    return f"{AIRBNB_ROOM_KEY_PREFIX}{room_id}{LAST_SYNC_KEY_SUFFIX}"


class CalendarSetting(Base):
    __tablename__ = "calendar_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    setting_key: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        index=True,
    )

    setting_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<CalendarSetting {self.setting_key}={self.setting_value!r}>"
