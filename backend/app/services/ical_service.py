"""
iCal Service

Airbnb iCal 동기화 (객실 단위)
- calendar_settings 의 iCal URL 에서 데이터 fetch (httpx, 선택적으로 프록시 경유)
- VEVENT 파싱 → booking / blocked 분류
- CalendarReconciler 로 DB 반영
- 결과(성공 시각 또는 "ERROR: ...")를 calendar_settings 에 기록

네트워크 요청 중에는 DB 세션을 열지 않는다.
fetch 가 끝난 뒤에 세션을 열어서 반영하고 바로 commit.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterator, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.models.blocked_date import BlockedDateSource
from app.domain.models.booking import BookingSource
from app.domain.models.calendar_setting import SYNC_ERROR_PREFIX
from app.repositories.blocked_date_repository import BlockedDateRepository
from app.repositories.booking_repository import BookingRepository
from app.repositories.calendar_setting_repository import (
    CalendarSettingRepository,
    SyncConfiguration,
)
from app.services.calendar_reconciler import (
    CalendarReconciler,
    ReconcileResult,
    VanishedBookingPolicy,
)
from app.services.ical_event_classifier import ClassifiedEvent, partition_events
from app.services.ical_parser import CalendarEvent, IcalParseError, tokenize_ical

logger = logging.getLogger(__name__)


# Airbnb 는 기본 UA 요청을 종종 거절함
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
    "Accept": "text/calendar, text/plain, */*",
    "Cache-Control": "no-cache",
}

VCALENDAR_MARKER = "BEGIN:VCALENDAR"


class IcalFetchError(Exception):
    """iCal 피드를 가져오지 못함 (네트워크 오류, 2xx 아님, iCal 아님)"""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(message)


@dataclass
class ParsedFeed:
    events: list[CalendarEvent]
    bookings: list[ClassifiedEvent]
    blocked: list[ClassifiedEvent]


@dataclass
class RoomSyncResult:
    """객실 하나의 동기화 결과"""
    room_id: int
    success: bool
    events_found: int = 0
    bookings_found: int = 0
    blocked_found: int = 0
    reconcile: Optional[ReconcileResult] = None
    error: Optional[str] = None
    synced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "success": self.success,
            "events_found": self.events_found,
            "bookings_found": self.bookings_found,
            "blocked_found": self.blocked_found,
            "changes": self.reconcile.to_dict() if self.reconcile else None,
            "error": self.error,
            "synced_at": self.synced_at.isoformat(),
        }


class IcalService:
    """
    iCal 서비스

    - fetch_ical: URL 에서 iCal 텍스트 가져오기 (실패 시 IcalFetchError)
    - parse_feed: 텍스트 → 분류된 이벤트
    - sync_room: 객실 하나 동기화 (실패는 기록만 하고 결과로 반환)
    - get_room_sync_stats / quick_unblock / remove_integration: 관리 기능

    db 를 주면 그 세션을 사용 (API 요청), 없으면 session_factory 로 매번 새로 연다 (워커).
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        *,
        session_factory: Optional[Callable[[], Session]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        proxy_url: Optional[str] = None,
        vanished_booking_policy: Optional[VanishedBookingPolicy] = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.http_client = http_client
        self.timeout = timeout if timeout is not None else settings.ICAL_FETCH_TIMEOUT_SECONDS
        self.proxy_url = settings.ICAL_PROXY_URL if proxy_url is None else proxy_url
        self.vanished_booking_policy = vanished_booking_policy or VanishedBookingPolicy(
            settings.ICAL_VANISHED_BOOKING_POLICY
        )

    # ─────────────────────────────────────────────────────────
    # fetch / parse
    # ─────────────────────────────────────────────────────────

    async def fetch_ical(self, url: str) -> str:
        """
        iCal URL 에서 데이터 fetch

        Args:
            url: Airbnb iCal URL

        Returns:
            iCal 데이터 문자열

        Raises:
            IcalFetchError: 타임아웃, 네트워크 오류, 2xx 아님, 응답이 iCal 이 아님
        """
        if self.proxy_url:
            request_url, params = self.proxy_url, {"icalUrl": url}
        else:
            request_url, params = url, None

        try:
            if self.http_client is not None:
                response = await self._get(self.http_client, request_url, params)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client, request_url, params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(f"ICAL_SERVICE: Timeout fetching iCal: {url}")
            raise IcalFetchError(url, f"Timeout fetching iCal after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"ICAL_SERVICE: Failed to fetch iCal: {url}, status: {e.response.status_code}")
            raise IcalFetchError(url, f"HTTP error! status: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"ICAL_SERVICE: Failed to fetch iCal: {url}, error: {e}")
            raise IcalFetchError(url, f"Failed to fetch iCal: {e}") from e

        text = response.text
        if VCALENDAR_MARKER not in text:
            # 로그인 페이지/에러 페이지를 빈 캘린더로 취급하면 차단이 전부 지워진다
            logger.error(f"ICAL_SERVICE: Response is not an iCal feed: {url}")
            raise IcalFetchError(url, "Response is not an iCal feed")
        return text

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[dict[str, str]],
    ) -> httpx.Response:
        return await client.get(
            url,
            params=params,
            headers=DEFAULT_HEADERS,
            timeout=self.timeout,
            follow_redirects=True,
        )

    def parse_feed(self, ical_data: str) -> ParsedFeed:
        events = tokenize_ical(ical_data)
        bookings, blocked = partition_events(events)
        return ParsedFeed(events=events, bookings=bookings, blocked=blocked)

    # ─────────────────────────────────────────────────────────
    # sync
    # ─────────────────────────────────────────────────────────

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self.db is not None:
            yield self.db
            return
        if self.session_factory is None:
            raise RuntimeError("IcalService needs either db or session_factory")
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    async def sync_room(self, config: SyncConfiguration) -> RoomSyncResult:
        """
        객실 하나 동기화

        실패해도 예외를 올리지 않는다. "ERROR: <메시지>" 를 기록하고
        success=False 결과를 돌려준다 (다른 객실 동기화는 계속).
        """
        room_id = config.room_id

        try:
            ical_data = await self.fetch_ical(config.calendar_url)
        except IcalFetchError as e:
            self._record_error(room_id, e.message)
            return RoomSyncResult(room_id=room_id, success=False, error=e.message)

        try:
            feed = self.parse_feed(ical_data)
        except IcalParseError as e:
            logger.warning(f"ICAL_SERVICE: Unreadable feed for room={room_id}: {e}")
            self._record_error(room_id, str(e))
            return RoomSyncResult(room_id=room_id, success=False, error=str(e))

        logger.info(
            f"ICAL_SERVICE: room={room_id} events={len(feed.events)} "
            f"bookings={len(feed.bookings)} blocked={len(feed.blocked)}"
        )

        synced_at = datetime.now(timezone.utc)
        with self._session() as db:
            try:
                reconcile = CalendarReconciler(
                    db, vanished_booking_policy=self.vanished_booking_policy,
                ).reconcile(room_id, feed.bookings, feed.blocked)
                CalendarSettingRepository(db).mark_synced(room_id, synced_at)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"ICAL_SERVICE: Sync failed for room={room_id}: {e}")
                self._record_error(room_id, f"Database error: {e.__class__.__name__}")
                return RoomSyncResult(
                    room_id=room_id,
                    success=False,
                    events_found=len(feed.events),
                    error=str(e),
                )

        return RoomSyncResult(
            room_id=room_id,
            success=True,
            events_found=len(feed.events),
            bookings_found=len(feed.bookings),
            blocked_found=len(feed.blocked),
            reconcile=reconcile,
            synced_at=synced_at,
        )

    def _record_error(self, room_id: int, message: str) -> None:
        with self._session() as db:
            try:
                CalendarSettingRepository(db).mark_sync_error(room_id, message)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"ICAL_SERVICE: Failed to record sync error for room={room_id}: {e}")

    # ─────────────────────────────────────────────────────────
    # 관리 기능 (API 요청 세션 사용, commit 은 호출자)
    # ─────────────────────────────────────────────────────────

    def get_room_sync_stats(self, room_id: int) -> dict[str, Any]:
        with self._session() as db:
            settings_repo = CalendarSettingRepository(db)
            bookings = BookingRepository(db)
            blocked_dates = BlockedDateRepository(db)

            config = settings_repo.get_sync_configuration(room_id)
            last_sync = settings_repo.get_last_sync(room_id)
            last_error = None
            if last_sync and last_sync.startswith(SYNC_ERROR_PREFIX):
                last_error = last_sync[len(SYNC_ERROR_PREFIX):].strip()
                last_sync = None

            airbnb_bookings = bookings.list_for_room(room_id, source=BookingSource.AIRBNB)
            website_bookings = bookings.list_active(room_id=room_id, source=BookingSource.WEBSITE)

            return {
                "room_id": room_id,
                "calendar_url": config.calendar_url if config else None,
                "sync_enabled": bool(config and config.sync_enabled),
                "last_sync": last_sync,
                "last_error": last_error,
                "airbnb_bookings": len(airbnb_bookings),
                "airbnb_active_bookings": sum(1 for b in airbnb_bookings if b.is_active),
                "airbnb_blocked_dates": len(blocked_dates.list_airbnb_for_room(room_id)),
                "manual_blocked_dates": len(
                    blocked_dates.list_for_room(room_id, source=BlockedDateSource.MANUAL)
                ),
                "website_active_bookings": len(website_bookings),
            }

    def quick_unblock(self, room_id: int, start: date, end: date) -> int:
        """
        기간 안의 Airbnb 차단 삭제 (관리자 수동 해제)

        manual 차단은 건드리지 않는다. Airbnb 쪽에서 여전히 막혀 있으면
        다음 동기화 때 다시 생긴다.
        """
        with self._session() as db:
            repo = BlockedDateRepository(db)
            rows = repo.find_airbnb_within(room_id, start, end)
            for row in rows:
                repo.delete(row)
            logger.info(
                f"ICAL_SERVICE: Quick unblock room={room_id} {start}~{end}: "
                f"{len(rows)} Airbnb blocked date(s) removed"
            )
            return len(rows)

    def remove_integration(self, room_id: int) -> dict[str, int]:
        """연동 해제: URL/동기화 기록 + 동기화로 생긴 Airbnb 예약/차단 전부 삭제"""
        with self._session() as db:
            result = {
                "settings_deleted": CalendarSettingRepository(db).remove_integration(room_id),
                "bookings_deleted": BookingRepository(db).delete_airbnb_for_room(room_id),
                "blocked_dates_deleted": BlockedDateRepository(db).delete_airbnb_for_room(room_id),
            }
            logger.info(f"ICAL_SERVICE: Removed Airbnb integration room={room_id}: {result}")
            return result
