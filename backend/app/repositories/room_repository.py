from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain.models.room import Room


class RoomRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, room_id: int) -> Optional[Room]:
        return self.db.get(Room, room_id)

    def get_names(self, room_ids: Sequence[int]) -> dict[int, str]:
        """{room_id: name} (없는 객실은 빠짐)"""
        if not room_ids:
            return {}
        stmt = select(Room.id, Room.name).where(Room.id.in_(set(room_ids)))
        return {room_id: name for room_id, name in self.db.execute(stmt).all()}

    def lock(self, room_id: int) -> Optional[Room]:
        """
        객실 row 잠금 (SELECT ... FOR UPDATE)

        예약 생성 직전 재확인 + INSERT 를 같은 객실끼리 직렬화.
        SQLite 는 FOR UPDATE 를 무시한다 (DB 전체 쓰기 잠금이라 필요 없음).
        """
        stmt = select(Room).where(Room.id == room_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()
