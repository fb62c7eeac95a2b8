# backend/app/services/sync_scheduler.py
"""
Calendar Sync Scheduler (APScheduler 기반)

ICAL_SYNC_INTERVAL_MINUTES 마다 모든 객실의 Airbnb iCal 을 동기화합니다.

사용법:
    from app.services.sync_scheduler import SyncScheduler

    # FastAPI lifespan에서
    scheduler = SyncScheduler(session_factory=SessionLocal)
    scheduler.start()
    ...
    scheduler.shutdown()
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from app.core.config import settings
from app.repositories.calendar_setting_repository import (
    CalendarSettingRepository,
    SyncConfiguration,
)
from app.services.ical_service import IcalService, RoomSyncResult

# 로거 설정
logger = logging.getLogger("homestay.scheduler")
logger.setLevel(logging.INFO)

# 콘솔 핸들러 추가 (서버 로그에 출력)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s [SCHEDULER] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


SYNC_JOB_ID = "airbnb_ical_sync_job"


@dataclass
class SyncPassResult:
    """전체 동기화 1회 결과"""
    started_at: datetime
    finished_at: datetime
    rooms: list[RoomSyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.rooms if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.rooms if not r.success)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rooms": [r.to_dict() for r in self.rooms],
        }


Listener = Callable[[SyncPassResult], Union[None, Awaitable[None]]]


class CalendarSyncWorker:
    """
    동기화 1회(pass) 실행기

    - 동시에 한 번만 실행 (이미 실행 중이면 이번 tick 은 스킵)
    - 객실별 동기화는 병렬 (asyncio.gather), 한 객실 실패가 다른 객실에 영향 없음
    - 끝나면 listener 들에게 결과 통지 (UI 새로고침 등)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        ical_service_factory: Optional[Callable[[], IcalService]] = None,
    ):
        self.session_factory = session_factory
        self.http_client = http_client
        self._ical_service_factory = ical_service_factory
        self._lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self.last_sync_timestamps: dict[int, datetime] = {}
        self.last_result: Optional[SyncPassResult] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _ical_service(self) -> IcalService:
        if self._ical_service_factory is not None:
            return self._ical_service_factory()
        return IcalService(session_factory=self.session_factory, http_client=self.http_client)

    def _load_configurations(self) -> list[SyncConfiguration]:
        db = self.session_factory()
        try:
            return CalendarSettingRepository(db).get_sync_configurations()
        finally:
            db.close()

    async def run_pass(self) -> Optional[SyncPassResult]:
        """
        모든 객실 동기화 1회

        Returns:
            SyncPassResult, 이미 다른 pass 가 실행 중이면 None
        """
        if self._lock.locked():
            logger.info("이전 동기화가 아직 실행 중 - 이번 실행 스킵")
            return None

        async with self._lock:
            started_at = datetime.now(timezone.utc)
            logger.info("=" * 60)
            logger.info("Airbnb iCal Sync 시작")
            logger.info(f"  시작 시간: {started_at.isoformat()}")
            logger.info("=" * 60)

            configs = [c for c in self._load_configurations() if c.sync_enabled]
            logger.info(f"  → 동기화 대상 객실 {len(configs)}개")

            service = self._ical_service()
            outcomes = await asyncio.gather(
                *(self._sync_one(service, config) for config in configs)
            )

            finished_at = datetime.now(timezone.utc)
            result = SyncPassResult(started_at=started_at, finished_at=finished_at, rooms=list(outcomes))
            for room in result.rooms:
                if room.success:
                    self.last_sync_timestamps[room.room_id] = room.synced_at
            self.last_result = result

            logger.info("-" * 60)
            logger.info("Airbnb iCal Sync 완료")
            logger.info(f"  소요 시간: {result.duration_seconds:.1f}초")
            logger.info(f"  성공: {result.succeeded}개 / 실패: {result.failed}개")
            for room in result.rooms:
                if not room.success:
                    logger.info(f"  ✗ room={room.room_id}: {room.error}")
            logger.info("=" * 60)

        await self._notify(result)
        return result

    async def _sync_one(self, service: IcalService, config: SyncConfiguration) -> RoomSyncResult:
        try:
            return await service.sync_room(config)
        except Exception as e:
            logger.error(f"room={config.room_id} 동기화 실패: {e}")
            logger.exception("상세 에러:")
            return RoomSyncResult(room_id=config.room_id, success=False, error=str(e))

    async def _notify(self, result: SyncPassResult) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"동기화 listener 실패: {e}")


class SyncScheduler:
    """
    AsyncIOScheduler 래퍼 (FastAPI lifespan 에서 start / shutdown)
    """

    def __init__(
        self,
        worker: CalendarSyncWorker,
        interval_minutes: Optional[int] = None,
    ):
        self.worker = worker
        self.interval_minutes = interval_minutes or settings.ICAL_SYNC_INTERVAL_MINUTES
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def sync_job(self) -> None:
        await self.worker.run_pass()

    def start(self, run_immediately: bool = True) -> None:
        """
        스케줄러 시작

        Args:
            run_immediately: True 면 첫 동기화를 interval 기다리지 않고 바로 실행
        """
        if self._scheduler is not None:
            logger.warning("스케줄러가 이미 실행 중입니다")
            return

        self._scheduler = AsyncIOScheduler()
        job_kwargs: dict[str, Any] = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self._scheduler.add_job(
            self.sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SYNC_JOB_ID,
            name="Airbnb iCal Sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        self._scheduler.start()

        logger.info("=" * 60)
        logger.info("Calendar Sync Scheduler 시작됨")
        logger.info(f"  [Job] Airbnb iCal Sync: {self.interval_minutes}분 간격")
        logger.info(f"        다음 실행: {self._scheduler.get_job(SYNC_JOB_ID).next_run_time}")
        logger.info("=" * 60)

    def shutdown(self) -> None:
        """스케줄러 종료"""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Calendar Sync Scheduler 종료됨")

    def status(self) -> dict[str, Any]:
        jobs = []
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                })
        last = self.worker.last_result
        return {
            "running": self.running,
            "interval_minutes": self.interval_minutes,
            "sync_in_progress": self.worker.is_running,
            "jobs": jobs,
            "last_sync_timestamps": {
                str(room_id): ts.isoformat()
                for room_id, ts in sorted(self.worker.last_sync_timestamps.items())
            },
            "last_result": last.to_dict() if last else None,
        }

    async def run_now(self) -> Optional[SyncPassResult]:
        """수동으로 동기화 즉시 실행"""
        logger.info("동기화 수동 실행 요청됨")
        return await self.worker.run_pass()
