# backend/app/domain/models/__init__.py

from app.db.base import Base

from .room import Room
from .booking import Booking, BookingStatus, PaymentStatus, BookingSource
from .blocked_date import BlockedDate, BlockedDateSource
from .calendar_setting import CalendarSetting

__all__ = [
    "Base",
    "Room",
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "BookingSource",
    "BlockedDate",
    "BlockedDateSource",
    "CalendarSetting",
]
