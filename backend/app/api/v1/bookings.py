"""
Bookings API

웹사이트 예약 생성/조회
- 생성 전에 가용성 체크 (겹치면 409)
- Airbnb 예약은 동기화가 만들기 때문에 여기서는 website 만 생성
"""
import logging
from datetime import date, datetime
from typing import Any, Optional, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.api.v1.calendar import get_ical_service
from app.db.session import get_db
from app.domain.models.booking import Booking, BookingSource, BookingStatus, PaymentStatus
from app.domain.models.room import DEFAULT_CHECK_IN_TIME, DEFAULT_CHECK_OUT_TIME
from app.repositories.booking_repository import BookingRepository
from app.repositories.calendar_setting_repository import CalendarSettingRepository
from app.repositories.room_repository import RoomRepository
from app.services.availability_service import (
    AvailabilityReason,
    AvailabilityService,
    check_airbnb_feed,
)
from app.services.ical_service import IcalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ========== DTOs ==========

class BookingCreateRequest(BaseModel):
    room_id: int
    check_in_date: date
    check_out_date: date
    guest_name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    num_guests: int = Field(default=2, ge=1)
    special_requests: Optional[str] = None
    total_amount: float = Field(default=0, ge=0)
    booking_status: Literal["confirmed", "pending"] = "pending"
    payment_status: Literal["paid", "pending"] = "pending"
    verify_with_airbnb: bool = Field(
        default=False,
        description="저장 전에 Airbnb 피드를 직접 받아서 겹침 확인",
    )


class BookingDTO(BaseModel):
    id: int
    room_id: int
    check_in_date: date
    check_out_date: date
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    guest_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    num_guests: int
    special_requests: Optional[str] = None
    total_amount: float
    booking_status: str
    payment_status: str
    booking_source: str
    external_booking_id: Optional[str] = None
    external_platform_data: Optional[dict[str, Any]] = None
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


def _to_dto(booking: Booking) -> BookingDTO:
    return BookingDTO.model_validate(booking)


# ========== Endpoints ==========

@router.post("", response_model=BookingDTO, status_code=201)
async def create_booking(
    request: BookingCreateRequest,
    db: Session = Depends(get_db),
    ical_service: IcalService = Depends(get_ical_service),
) -> BookingDTO:
    """
    웹사이트 예약 생성

    - 날짜 범위가 잘못되면 400
    - 기존 예약/차단과 겹치면 409 (detail 에 reason, conflicts)
    """
    room = RoomRepository(db).get(request.room_id)
    if not room:
        raise HTTPException(status_code=404, detail=f"Room not found: {request.room_id}")

    availability = AvailabilityService(db).check(
        request.room_id, request.check_in_date, request.check_out_date
    )
    if availability.reason in (
        AvailabilityReason.SAME_DAY_CHECKIN_CHECKOUT,
        AvailabilityReason.INVALID_DATE_RANGE,
    ):
        raise HTTPException(status_code=400, detail=availability.to_dict())

    if availability.available and request.verify_with_airbnb:
        config = CalendarSettingRepository(db).get_sync_configuration(request.room_id)
        availability = await check_airbnb_feed(
            request.check_in_date,
            request.check_out_date,
            config.calendar_url if config and config.sync_enabled else None,
            ical_service.fetch_ical,
        )

    if availability.available:
        # 재확인 + INSERT 는 객실 잠금 아래에서 (피드를 기다리는 동안 다른 요청이 같은 날짜를 잡았을 수 있음)
        RoomRepository(db).lock(request.room_id)
        availability = AvailabilityService(db).check(
            request.room_id, request.check_in_date, request.check_out_date
        )

    if not availability.available:
        logger.info(
            f"BOOKINGS_API: Rejected room={request.room_id} "
            f"{request.check_in_date}~{request.check_out_date}: {availability.reason.value}"
        )
        raise HTTPException(status_code=409, detail=availability.to_dict())

    booking = BookingRepository(db).create(
        room_id=request.room_id,
        check_in_date=request.check_in_date,
        check_out_date=request.check_out_date,
        check_in_time=room.check_in_time or DEFAULT_CHECK_IN_TIME,
        check_out_time=room.check_out_time or DEFAULT_CHECK_OUT_TIME,
        guest_name=request.guest_name,
        email=request.email,
        phone=request.phone,
        num_guests=request.num_guests,
        special_requests=request.special_requests,
        total_amount=request.total_amount,
        booking_status=request.booking_status,
        payment_status=request.payment_status,
        booking_source=BookingSource.WEBSITE.value,
    )
    db.commit()
    db.refresh(booking)

    logger.info(f"BOOKINGS_API: Created booking id={booking.id} room={booking.room_id}")
    return _to_dto(booking)


@router.get("", response_model=list[BookingDTO])
def list_bookings(
    room_id: int = Query(..., description="객실 ID"),
    source: Optional[BookingSource] = Query(default=None, description="website / airbnb"),
    include_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[BookingDTO]:
    repo = BookingRepository(db)
    if include_cancelled:
        bookings = repo.list_for_room(room_id, source=source)
    else:
        bookings = repo.list_active(room_id=room_id, source=source)
    return [_to_dto(b) for b in bookings]


@router.post("/{booking_id}/cancel", response_model=BookingDTO)
def cancel_booking(
    booking_id: int,
    db: Session = Depends(get_db),
) -> BookingDTO:
    """웹사이트 예약 취소 (Airbnb 예약은 Airbnb 에서 취소 → 동기화)"""
    repo = BookingRepository(db)
    booking = repo.get(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail=f"Booking not found: {booking_id}")
    if booking.booking_source != BookingSource.WEBSITE.value:
        raise HTTPException(status_code=409, detail="Airbnb bookings are managed by sync")

    payment_status = booking.payment_status
    if payment_status == PaymentStatus.PAID.value:
        payment_status = PaymentStatus.REFUNDED.value

    repo.update(
        booking,
        booking_status=BookingStatus.CANCELLED.value,
        payment_status=payment_status,
    )
    db.commit()
    db.refresh(booking)
    return _to_dto(booking)
