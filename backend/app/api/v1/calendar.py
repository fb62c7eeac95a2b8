"""
Calendar API

객실별 달력 데이터, Airbnb iCal 연동/동기화, 차단 관리, 예약 가능 여부 체크, iCal 피드
"""
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.domain.models.blocked_date import BlockedDateSource
from app.domain.models.calendar_setting import SYNC_ERROR_PREFIX
from app.domain.models.room import Room
from app.repositories.blocked_date_repository import BlockedDateRepository
from app.repositories.booking_repository import BookingRepository
from app.repositories.calendar_setting_repository import CalendarSettingRepository
from app.repositories.room_repository import RoomRepository
from app.services.availability_service import AvailabilityService, check_airbnb_feed
from app.services.calendar_feed_service import CalendarFeedService
from app.services.ical_service import IcalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


def get_ical_service(db: Session = Depends(get_db)) -> IcalService:
    return IcalService(db=db)


# ========== DTOs ==========

class CalendarDayType(str, Enum):
    """달력 날짜 타입"""
    AVAILABLE = "available"  # 예약 가능
    BOOKED = "booked"        # 예약됨
    CHECKIN = "checkin"      # 체크인 날
    BLOCKED = "blocked"      # 차단됨 (Airbnb / manual)


class CalendarDayDTO(BaseModel):
    """달력 하루 데이터"""
    date: date
    type: CalendarDayType
    booking_id: Optional[int] = None
    guest_name: Optional[str] = None
    booking_source: Optional[str] = None
    blocked_reason: Optional[str] = None
    blocked_source: Optional[str] = None


class CalendarMonthDTO(BaseModel):
    """월별 달력 데이터"""
    room_id: int
    room_name: str
    year: int
    month: int
    days: list[CalendarDayDTO]
    occupancy_rate: float  # 점유율 (0~100)
    booked_days: int
    blocked_days: int
    available_days: int
    total_days: int
    last_sync: Optional[str] = None
    last_sync_error: Optional[str] = None


class SyncConfigurationDTO(BaseModel):
    room_id: int
    room_name: Optional[str] = None
    calendar_url: str
    platform: str
    sync_enabled: bool
    last_sync: Optional[str] = None
    last_sync_error: Optional[str] = None


class IcalUrlUpdateRequest(BaseModel):
    """iCal URL 설정 요청"""
    ical_url: str


class DateRangeRequest(BaseModel):
    start_date: date
    end_date: date


class BlockedDateCreateRequest(BaseModel):
    start_date: date
    end_date: date
    reason: Optional[str] = "Not available"
    notes: Optional[str] = None


class BlockedDateDTO(BaseModel):
    id: int
    room_id: int
    start_date: date
    end_date: date
    reason: Optional[str] = None
    notes: Optional[str] = None
    source: str
    created_at: Optional[datetime] = None


class AvailabilityCheckRequest(BaseModel):
    """예약 가능 여부 체크 요청"""
    room_id: int
    check_in: date
    check_out: date
    include_airbnb_feed: bool = Field(
        default=False,
        description="DB 체크 후 Airbnb 피드를 직접 받아서 한번 더 확인",
    )


class AvailabilityCheckResponse(BaseModel):
    """예약 가능 여부 체크 응답"""
    available: bool
    reason: str
    conflicts: list[dict[str, Any]]
    message: str
    airbnb_check: Optional[dict[str, Any]] = None


# ========== Helper Functions ==========

def _get_month_range(year: int, month: int) -> tuple[date, date]:
    """월의 시작일과 종료일(다음달 1일) 반환"""
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1)
    else:
        end = date(year, month + 1, 1)
    return start, end


def _get_room_or_404(db: Session, room_id: int) -> Room:
    room = RoomRepository(db).get(room_id)
    if not room:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
    return room


def _split_last_sync(value: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """calendar_settings 의 last_sync 값 → (성공 시각, 에러 메시지)"""
    if value and value.startswith(SYNC_ERROR_PREFIX):
        return None, value[len(SYNC_ERROR_PREFIX):].strip()
    return value, None


def _validate_range(start: date, end: date) -> None:
    if end <= start:
        raise HTTPException(status_code=400, detail="end_date must be after start_date")


_AVAILABILITY_MESSAGES = {
    "available": "예약 가능합니다.",
    "same_day_checkin_checkout": "체크인/체크아웃 날짜가 같습니다.",
    "invalid_date_range": "체크아웃이 체크인보다 빠릅니다.",
    "website_booking_conflict": "기존 예약과 겹칩니다. (동기화된 Airbnb 예약 포함, conflicts[].source 로 구분)",
    "blocked_date_conflict": "차단된 날짜와 겹칩니다.",
    "airbnb_booking_conflict": "Airbnb 예약과 겹칩니다.",
    "airbnb_blocked_dates": "Airbnb 에서 차단된 날짜와 겹칩니다.",
}


# ========== Endpoints ==========
# 고정 경로를 /{room_id} 보다 먼저 등록

@router.get("/sync-configurations", response_model=list[SyncConfigurationDTO])
def list_sync_configurations(db: Session = Depends(get_db)) -> list[SyncConfigurationDTO]:
    """Airbnb iCal URL 이 설정된 객실 목록 + 마지막 동기화 결과"""
    repo = CalendarSettingRepository(db)
    configs = repo.get_sync_configurations()
    names = RoomRepository(db).get_names([c.room_id for c in configs])

    result = []
    for config in configs:
        last_sync, last_error = _split_last_sync(repo.get_last_sync(config.room_id))
        result.append(SyncConfigurationDTO(
            room_id=config.room_id,
            room_name=names.get(config.room_id),
            calendar_url=config.calendar_url,
            platform=config.platform,
            sync_enabled=config.sync_enabled,
            last_sync=last_sync,
            last_sync_error=last_error,
        ))
    return result


@router.get("/feed.ics")
def get_calendar_feed(
    room_id: Optional[int] = Query(default=None, description="특정 객실만 (기본: 전체)"),
    db: Session = Depends(get_db),
) -> Response:
    """
    웹사이트 예약 + manual 차단 iCal 피드 (Airbnb 에서 import 용)
    """
    body = CalendarFeedService(db).render(room_id=room_id)
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Cache-Control": "public, max-age=300"},
    )


@router.post("/check-availability", response_model=AvailabilityCheckResponse)
async def check_availability(
    request: AvailabilityCheckRequest,
    db: Session = Depends(get_db),
    ical_service: IcalService = Depends(get_ical_service),
) -> AvailabilityCheckResponse:
    """
    예약 가능 여부 체크

    [check_in, check_out) 과 겹치는 예약(confirmed/pending) 또는 차단이 있는지 확인.
    include_airbnb_feed=true 면 DB 상 가능할 때 Airbnb 피드도 직접 확인.
    """
    result = AvailabilityService(db).check(request.room_id, request.check_in, request.check_out)

    airbnb_check = None
    if result.available and request.include_airbnb_feed:
        config = CalendarSettingRepository(db).get_sync_configuration(request.room_id)
        feed_result = await check_airbnb_feed(
            request.check_in,
            request.check_out,
            config.calendar_url if config and config.sync_enabled else None,
            ical_service.fetch_ical,
        )
        airbnb_check = feed_result.to_dict()
        if not feed_result.available:
            result = feed_result

    return AvailabilityCheckResponse(
        available=result.available,
        reason=result.reason.value,
        conflicts=result.conflicts,
        message=_AVAILABILITY_MESSAGES.get(result.reason.value, result.reason.value),
        airbnb_check=airbnb_check,
    )


@router.delete("/blocked-dates/{blocked_date_id}")
def delete_blocked_date(
    blocked_date_id: int,
    db: Session = Depends(get_db),
):
    """
    manual 차단 삭제

    Airbnb 차단은 동기화가 관리하므로 거절 (quick-unblock 사용)
    """
    repo = BlockedDateRepository(db)
    blocked = repo.get(blocked_date_id)
    if not blocked:
        raise HTTPException(status_code=404, detail=f"Blocked date not found: {blocked_date_id}")
    if blocked.source != BlockedDateSource.MANUAL.value:
        raise HTTPException(
            status_code=409,
            detail="Airbnb blocked dates are managed by sync; use quick-unblock instead",
        )

    repo.delete(blocked)
    db.commit()
    return {"message": "Blocked date deleted", "id": blocked_date_id}


@router.get("/{room_id}", response_model=CalendarMonthDTO)
def get_calendar(
    room_id: int,
    year: int = Query(default=None, description="조회 연도 (기본: 현재)"),
    month: int = Query(default=None, ge=1, le=12, description="조회 월 (1-12)"),
    db: Session = Depends(get_db),
) -> CalendarMonthDTO:
    """
    객실별 월간 달력 데이터 조회

    - 예약 (웹사이트 + Airbnb, confirmed/pending)
    - 차단 (Airbnb + manual)
    - 점유율
    """
    # 기본값: 현재 월
    today = date.today()
    if year is None:
        year = today.year
    if month is None:
        month = today.month

    room = _get_room_or_404(db, room_id)

    start_date, end_date = _get_month_range(year, month)
    total_days = (end_date - start_date).days

    bookings = BookingRepository(db).find_overlapping(room_id, start_date, end_date)
    blocked_dates = BlockedDateRepository(db).find_overlapping(room_id, start_date, end_date)

    days: list[CalendarDayDTO] = []
    booked_count = 0
    blocked_count = 0

    current = start_date
    while current < end_date:
        day = CalendarDayDTO(date=current, type=CalendarDayType.AVAILABLE)

        # 예약 우선
        for booking in bookings:
            if booking.check_in_date <= current < booking.check_out_date:
                day.type = (
                    CalendarDayType.CHECKIN
                    if current == booking.check_in_date
                    else CalendarDayType.BOOKED
                )
                day.booking_id = booking.id
                day.guest_name = booking.guest_name
                day.booking_source = booking.booking_source
                booked_count += 1
                break

        if day.type == CalendarDayType.AVAILABLE:
            for blocked in blocked_dates:
                if blocked.start_date <= current < blocked.end_date:
                    day.type = CalendarDayType.BLOCKED
                    day.blocked_reason = blocked.reason
                    day.blocked_source = blocked.source
                    blocked_count += 1
                    break

        days.append(day)
        current += timedelta(days=1)

    occupied_days = booked_count + blocked_count
    occupancy_rate = (occupied_days / total_days * 100) if total_days > 0 else 0
    last_sync, last_error = _split_last_sync(CalendarSettingRepository(db).get_last_sync(room_id))

    return CalendarMonthDTO(
        room_id=room_id,
        room_name=room.name,
        year=year,
        month=month,
        days=days,
        occupancy_rate=round(occupancy_rate, 1),
        booked_days=booked_count,
        blocked_days=blocked_count,
        available_days=total_days - occupied_days,
        total_days=total_days,
        last_sync=last_sync,
        last_sync_error=last_error,
    )


@router.put("/{room_id}/ical-url")
def update_ical_url(
    room_id: int,
    request: IcalUrlUpdateRequest,
    db: Session = Depends(get_db),
):
    """
    Airbnb iCal URL 설정/업데이트
    """
    _get_room_or_404(db, room_id)

    url = request.ical_url.strip()
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="ical_url must be an http(s) URL")

    CalendarSettingRepository(db).set_calendar_url(room_id, url)
    db.commit()

    return {"message": "iCal URL updated", "room_id": room_id, "ical_url": url}


@router.delete("/{room_id}/integration")
def remove_integration(
    room_id: int,
    db: Session = Depends(get_db),
    ical_service: IcalService = Depends(get_ical_service),
):
    """
    Airbnb 연동 해제

    URL + 동기화 기록 + 동기화로 생긴 Airbnb 예약/차단 모두 삭제
    """
    if CalendarSettingRepository(db).get_sync_configuration(room_id) is None:
        raise HTTPException(status_code=404, detail=f"No Airbnb integration for room: {room_id}")

    result = ical_service.remove_integration(room_id)
    db.commit()
    return {"message": "Airbnb integration removed", "room_id": room_id, **result}


@router.post("/{room_id}/sync")
async def sync_room(
    room_id: int,
    db: Session = Depends(get_db),
    ical_service: IcalService = Depends(get_ical_service),
):
    """
    객실 하나 즉시 동기화 (스케줄러와 별개, 결과를 바로 반환)
    """
    _get_room_or_404(db, room_id)

    config = CalendarSettingRepository(db).get_sync_configuration(room_id)
    if not config or not config.sync_enabled:
        raise HTTPException(status_code=400, detail="iCal URL not configured")

    result = await ical_service.sync_room(config)
    logger.info(
        f"CALENDAR_API: Manual sync room={room_id} success={result.success}"
    )
    return result.to_dict()


@router.get("/{room_id}/sync-stats")
def get_sync_stats(
    room_id: int,
    db: Session = Depends(get_db),
    ical_service: IcalService = Depends(get_ical_service),
):
    _get_room_or_404(db, room_id)
    return ical_service.get_room_sync_stats(room_id)


@router.post("/{room_id}/quick-unblock")
def quick_unblock(
    room_id: int,
    request: DateRangeRequest,
    db: Session = Depends(get_db),
    ical_service: IcalService = Depends(get_ical_service),
):
    """
    기간 안의 Airbnb 차단 즉시 해제

    Airbnb 쪽 차단이 남아 있으면 다음 동기화에서 다시 생긴다.
    """
    _get_room_or_404(db, room_id)
    _validate_range(request.start_date, request.end_date)

    deleted = ical_service.quick_unblock(room_id, request.start_date, request.end_date)
    db.commit()
    return {
        "room_id": room_id,
        "start_date": request.start_date,
        "end_date": request.end_date,
        "deleted": deleted,
    }


@router.post("/{room_id}/blocked-dates", response_model=BlockedDateDTO, status_code=201)
def create_blocked_date(
    room_id: int,
    request: BlockedDateCreateRequest,
    db: Session = Depends(get_db),
) -> BlockedDateDTO:
    """manual 차단 추가 (동기화가 건드리지 않음)"""
    _get_room_or_404(db, room_id)
    _validate_range(request.start_date, request.end_date)

    blocked = BlockedDateRepository(db).create(
        room_id=room_id,
        start_date=request.start_date,
        end_date=request.end_date,
        reason=request.reason,
        notes=request.notes,
        source=BlockedDateSource.MANUAL.value,
    )
    db.commit()
    db.refresh(blocked)

    return BlockedDateDTO(
        id=blocked.id,
        room_id=blocked.room_id,
        start_date=blocked.start_date,
        end_date=blocked.end_date,
        reason=blocked.reason,
        notes=blocked.notes,
        source=blocked.source,
        created_at=blocked.created_at,
    )
