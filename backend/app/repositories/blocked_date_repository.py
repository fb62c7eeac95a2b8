"""
BlockedDate Repository

차단 기간 조회/생성/삭제
- Airbnb 차단은 동기화가 소유 (reconciler 에서만 생성/삭제)
- manual 차단은 관리자 API 에서만 생성/삭제
"""
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from app.domain.models.blocked_date import BlockedDate, BlockedDateSource


class BlockedDateRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, blocked_date_id: int) -> Optional[BlockedDate]:
        return self.db.get(BlockedDate, blocked_date_id)

    def list_for_room(
        self,
        room_id: int,
        *,
        source: Optional[BlockedDateSource] = None,
    ) -> Sequence[BlockedDate]:
        stmt = select(BlockedDate).where(BlockedDate.room_id == room_id)
        if source is not None:
            stmt = stmt.where(BlockedDate.source == source.value)
        stmt = stmt.order_by(BlockedDate.start_date, BlockedDate.id)
        return self.db.execute(stmt).scalars().all()

    def list_airbnb_for_room(self, room_id: int) -> Sequence[BlockedDate]:
        return self.list_for_room(room_id, source=BlockedDateSource.AIRBNB_BLOCKED)

    def list_by_source(self, source: BlockedDateSource) -> Sequence[BlockedDate]:
        stmt = (
            select(BlockedDate)
            .where(BlockedDate.source == source.value)
            .order_by(BlockedDate.start_date, BlockedDate.id)
        )
        return self.db.execute(stmt).scalars().all()

    def find_overlapping(
        self,
        room_id: int,
        start: date,
        end: date,
    ) -> Sequence[BlockedDate]:
        """[start, end) 와 겹치는 차단 (출처 무관)"""
        stmt = (
            select(BlockedDate)
            .where(
                BlockedDate.room_id == room_id,
                BlockedDate.start_date < end,
                BlockedDate.end_date > start,
            )
            .order_by(BlockedDate.start_date, BlockedDate.id)
        )
        return self.db.execute(stmt).scalars().all()

    def find_airbnb_within(
        self,
        room_id: int,
        start: date,
        end: date,
    ) -> Sequence[BlockedDate]:
        """start_date >= start AND end_date <= end 인 Airbnb 차단 (빠른 차단 해제용)"""
        stmt = (
            select(BlockedDate)
            .where(
                BlockedDate.room_id == room_id,
                BlockedDate.source == BlockedDateSource.AIRBNB_BLOCKED.value,
                BlockedDate.start_date >= start,
                BlockedDate.end_date <= end,
            )
            .order_by(BlockedDate.start_date, BlockedDate.id)
        )
        return self.db.execute(stmt).scalars().all()

    def create(self, **fields) -> BlockedDate:
        blocked = BlockedDate(**fields)
        self.db.add(blocked)
        self.db.flush()
        return blocked

    def update(self, blocked: BlockedDate, **fields) -> BlockedDate:
        for key, value in fields.items():
            if hasattr(blocked, key):
                setattr(blocked, key, value)
        self.db.flush()
        return blocked

    def delete(self, blocked: BlockedDate) -> None:
        self.db.delete(blocked)
        self.db.flush()

    def delete_airbnb_for_room(self, room_id: int) -> int:
        result = self.db.execute(
            delete(BlockedDate).where(
                BlockedDate.room_id == room_id,
                BlockedDate.source == BlockedDateSource.AIRBNB_BLOCKED.value,
            )
        )
        return result.rowcount or 0
