"""
CalendarSetting Repository

calendar_settings key-value 조회/저장
- 객실별 Airbnb iCal URL (airbnb_room_<id>)
- 객실별 마지막 동기화 결과 (airbnb_room_<id>_last_sync)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from app.domain.models.calendar_setting import (
    AIRBNB_ROOM_KEY_PREFIX,
    LAST_SYNC_KEY_SUFFIX,
    SYNC_ERROR_PREFIX,
    CalendarSetting,
    airbnb_last_sync_key,
    airbnb_url_key,
)


@dataclass(frozen=True)
class SyncConfiguration:
    """객실 하나의 iCal 동기화 설정"""
    room_id: int
    calendar_url: str
    platform: str = "airbnb"
    sync_enabled: bool = True


def parse_room_id(setting_key: str) -> Optional[int]:
    """'airbnb_room_12' → 12, 그 외(_last_sync 포함)는 None"""
    if not setting_key.startswith(AIRBNB_ROOM_KEY_PREFIX):
        return None
    if setting_key.endswith(LAST_SYNC_KEY_SUFFIX):
        return None
    raw = setting_key[len(AIRBNB_ROOM_KEY_PREFIX):]
    if not raw.isdigit():
        return None
    return int(raw)


class CalendarSettingRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, setting_key: str) -> Optional[CalendarSetting]:
        stmt = select(CalendarSetting).where(CalendarSetting.setting_key == setting_key)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_value(self, setting_key: str) -> Optional[str]:
        setting = self.get(setting_key)
        return setting.setting_value if setting else None

    def set_value(self, setting_key: str, value: Optional[str]) -> CalendarSetting:
        """있으면 UPDATE, 없으면 INSERT"""
        setting = self.get(setting_key)
        if setting is None:
            setting = CalendarSetting(setting_key=setting_key, setting_value=value)
            self.db.add(setting)
        else:
            setting.setting_value = value
            setting.updated_at = datetime.utcnow()
        self.db.flush()
        return setting

    def delete_keys(self, *setting_keys: str) -> int:
        result = self.db.execute(
            delete(CalendarSetting).where(CalendarSetting.setting_key.in_(setting_keys))
        )
        return result.rowcount or 0

    def list_airbnb_settings(self) -> Sequence[CalendarSetting]:
        stmt = (
            select(CalendarSetting)
            .where(CalendarSetting.setting_key.like(f"{AIRBNB_ROOM_KEY_PREFIX}%"))
            .order_by(CalendarSetting.setting_key)
        )
        return self.db.execute(stmt).scalars().all()

    # --- 동기화 설정 ---

    def get_sync_configurations(self) -> list[SyncConfiguration]:
        """
        URL 이 설정된 객실의 동기화 설정 목록

        - 빈 값 / http 로 시작하지 않는 값은 동기화 대상 아님
          (예전에 _last_sync 타임스탬프가 URL 키에 잘못 들어간 경우 방지)
        """
        configs: list[SyncConfiguration] = []
        for setting in self.list_airbnb_settings():
            room_id = parse_room_id(setting.setting_key)
            if room_id is None:
                continue
            url = (setting.setting_value or "").strip()
            if not url:
                continue
            configs.append(SyncConfiguration(
                room_id=room_id,
                calendar_url=url,
                sync_enabled=url.startswith("http"),
            ))
        configs.sort(key=lambda c: c.room_id)
        return configs

    def get_sync_configuration(self, room_id: int) -> Optional[SyncConfiguration]:
        for config in self.get_sync_configurations():
            if config.room_id == room_id:
                return config
        return None

    def set_calendar_url(self, room_id: int, url: str) -> CalendarSetting:
        setting = self.set_value(airbnb_url_key(room_id), url.strip())
        # URL 이 바뀌면 이전 동기화 결과는 의미 없음
        self.set_value(airbnb_last_sync_key(room_id), None)
        return setting

    def remove_integration(self, room_id: int) -> int:
        return self.delete_keys(airbnb_url_key(room_id), airbnb_last_sync_key(room_id))

    # --- 동기화 결과 ---

    def mark_synced(self, room_id: int, synced_at: Optional[datetime] = None) -> None:
        synced_at = synced_at or datetime.now(timezone.utc)
        self.set_value(airbnb_last_sync_key(room_id), synced_at.isoformat())

    def mark_sync_error(self, room_id: int, message: str) -> None:
        self.set_value(airbnb_last_sync_key(room_id), f"{SYNC_ERROR_PREFIX} {message}")

    def get_last_sync(self, room_id: int) -> Optional[str]:
        return self.get_value(airbnb_last_sync_key(room_id))
