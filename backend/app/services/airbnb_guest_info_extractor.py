"""
Airbnb Guest Info Extractor - iCal SUMMARY/DESCRIPTION 에서 게스트 정보 추출

Airbnb iCal 피드의 한계:
- 이메일/전화번호/결제 금액/인원 수는 거의 들어있지 않음
- SUMMARY 에 게스트 이름, DESCRIPTION 에 예약 URL 정도만 있는 경우가 대부분

그래서 "있으면 뽑고, 없으면 명시적인 placeholder" 방식.
DataLimitations 로 어떤 값이 placeholder 인지 함께 넘긴다
("원래 비어있음" 과 "iCal 로는 알 수 없음" 을 구분하기 위해).

Usage:
    info = extract_guest_info(event.summary, event.description, uid=event.uid)
    info.guest_name, info.reservation_code, info.data_limitations.email ...
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from typing import Optional, Sequence


DEFAULT_GUEST_NAME = "Airbnb Guest"
DEFAULT_ROOM_INFO = "Room"
DEFAULT_NUM_GUESTS = 2
DEFAULT_TOTAL_AMOUNT = 0.0
UNAVAILABLE_IN_ICAL = "N/A - Not available in iCal"
BOOKED_VIA_AIRBNB = "Booked via Airbnb"


@dataclass
class DataLimitations:
    """True = 해당 값은 iCal 에 없어서 placeholder 로 채움"""
    email: bool = True
    phone: bool = True
    payment_amount: bool = True
    guest_count: bool = True
    detailed_guest_info: bool = True  # iCal 은 항상 상세 게스트 정보 없음

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass
class GuestInfo:
    """iCal 이벤트 하나에서 추출한 게스트 정보"""
    guest_name: str = DEFAULT_GUEST_NAME
    room_info: str = DEFAULT_ROOM_INFO
    num_guests: int = DEFAULT_NUM_GUESTS
    reservation_code: Optional[str] = None
    email: str = UNAVAILABLE_IN_ICAL
    phone: str = UNAVAILABLE_IN_ICAL
    total_amount: float = DEFAULT_TOTAL_AMOUNT
    special_requests: str = BOOKED_VIA_AIRBNB
    extracted_info: str = ""
    data_limitations: DataLimitations = field(default_factory=DataLimitations)

    @property
    def has_guest_name(self) -> bool:
        return self.guest_name != DEFAULT_GUEST_NAME


# ─────────────────────────────────────────────────────────────
# 패턴 (순서 = 우선순위)
# ─────────────────────────────────────────────────────────────

_NAME_STOP = r"[^-–—\n\r(（]"

SUMMARY_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    # "John Smith", "John Smith - 2 guests"
    re.compile(r"^([A-Za-z\s]+?)(?:\s*[-–—]\s*|\s*$)"),
    re.compile(rf"Guest:\s*({_NAME_STOP}+)", re.IGNORECASE),
    re.compile(rf"Reserved\s*by:?\s*({_NAME_STOP}+)", re.IGNORECASE),
    re.compile(rf"Booking\s*for:?\s*({_NAME_STOP}+)", re.IGNORECASE),
)

DESCRIPTION_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"Guest:\s*({_NAME_STOP}+)", re.IGNORECASE),
    re.compile(rf"Name:\s*({_NAME_STOP}+)", re.IGNORECASE),
    re.compile(rf"Booked\s*by:\s*({_NAME_STOP}+)", re.IGNORECASE),
    re.compile(rf"Reserved\s*by:\s*({_NAME_STOP}+)", re.IGNORECASE),
)

# SUMMARY 앞부분이 이름 패턴에 걸려도 이런 단어면 이름이 아님
_NOT_A_NAME = ("reserved", "booking", "not available", "blocked", "unavailable", "airbnb")

ROOM_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[(（]([^)）]+)[)）]"),
    re.compile(r"Room:\s*([^-–—\n\r]+)", re.IGNORECASE),
    re.compile(r"-([^-–—\n\r]+)$"),
)

GUEST_COUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(\d+)\s*(?:guests?|persons?|people|pax)\b", re.IGNORECASE),
)

RESERVATION_CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Reservation URL: https://www.airbnb.com/hosting/reservations/details/HM4WAHCJ2D
    re.compile(r"/reservations/details/([A-Z0-9]+)", re.IGNORECASE),
    # 코드에는 숫자가 최소 하나 ("Reservation URL" 의 URL 같은 단어 제외)
    re.compile(
        r"(?:reservation|booking|confirmation)\s*(?:code|number|no\.?)?\s*[#:]?\s*([A-Z0-9]*\d[A-Z0-9]*)\b",
        re.IGNORECASE,
    ),
    re.compile(r"#([A-Z0-9]+)\b", re.IGNORECASE),
    re.compile(r"\b([A-Z]{2,}\d[A-Z0-9]*)\b"),
)

_EMAIL = r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"
EMAIL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"Email:\s*({_EMAIL})", re.IGNORECASE),
    re.compile(rf"Contact:\s*({_EMAIL})", re.IGNORECASE),
    re.compile(rf"({_EMAIL})"),
)

_PHONE = r"(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}"
PHONE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"Phone:\s*({_PHONE})", re.IGNORECASE),
    re.compile(rf"Contact:\s*({_PHONE})", re.IGNORECASE),
    re.compile(rf"Tel:\s*({_PHONE})", re.IGNORECASE),
    re.compile(rf"({_PHONE})"),
)

AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?:total|amount|price|cost)[:\s]*[$₹€£]?\s*(\d+(?:[.,]\d+)*)", re.IGNORECASE),
    re.compile(r"[$₹€£]\s*(\d+(?:[.,]\d+)*)"),
    re.compile(r"(\d+(?:[.,]\d+)*)\s*(?:USD|INR|EUR|GBP)\b", re.IGNORECASE),
)


def _first_match(patterns: Sequence[re.Pattern[str]], *texts: str) -> Optional[str]:
    """texts 를 순서대로, 각 text 에 patterns 를 순서대로 적용. 처음 나온 비어있지 않은 값."""
    for text in texts:
        if not text:
            continue
        for pattern in patterns:
            match = pattern.search(text)
            if match and match.group(1).strip():
                return match.group(1).strip()
    return None


def _looks_like_name(candidate: str) -> bool:
    lowered = candidate.lower()
    return bool(candidate) and not any(word in lowered for word in _NOT_A_NAME)


def extract_guest_name(summary: str, description: str = "") -> Optional[str]:
    summary = (summary or "").strip()
    for pattern in SUMMARY_NAME_PATTERNS:
        match = pattern.search(summary)
        if not match:
            continue
        candidate = match.group(1).strip()
        if _looks_like_name(candidate):
            return candidate
    return _first_match(DESCRIPTION_NAME_PATTERNS, description)


def extract_room_info(summary: str) -> Optional[str]:
    return _first_match(ROOM_PATTERNS, (summary or "").strip())


def extract_guest_count(summary: str, description: str = "") -> Optional[int]:
    raw = _first_match(GUEST_COUNT_PATTERNS, summary, description)
    if raw is None:
        return None
    count = int(raw)
    return count if count > 0 else None


def extract_reservation_code(summary: str, description: str = "") -> Optional[str]:
    return _first_match(RESERVATION_CODE_PATTERNS, summary, description)


def extract_email(description: str) -> Optional[str]:
    return _first_match(EMAIL_PATTERNS, description)


def extract_phone(description: str) -> Optional[str]:
    return _first_match(PHONE_PATTERNS, description)


def parse_amount(raw: str) -> Optional[float]:
    """'1,250.50' → 1250.5, '1250,50' → 1250.5"""
    value = raw.strip()
    if "," in value and "." in value:
        value = value.replace(",", "")
    elif "," in value:
        head, _, tail = value.rpartition(",")
        value = f"{head.replace(',', '')}.{tail}" if len(tail) == 2 else value.replace(",", "")
    try:
        return float(value)
    except ValueError:
        return None


def extract_amount(description: str) -> Optional[float]:
    raw = _first_match(AMOUNT_PATTERNS, description)
    if raw is None:
        return None
    amount = parse_amount(raw)
    return amount if amount else None


def extract_guest_info(
    summary: str,
    description: str = "",
    uid: Optional[str] = None,
) -> GuestInfo:
    """
    SUMMARY / DESCRIPTION 에서 게스트 정보 추출.

    Args:
        summary: VEVENT SUMMARY
        description: VEVENT DESCRIPTION
        uid: VEVENT UID (예약 코드 없을 때 fallback)

    Returns:
        GuestInfo (없는 값은 placeholder, data_limitations 에 표시)
    """
    summary = summary or ""
    description = description or ""

    guest_name = extract_guest_name(summary, description)
    room_info = extract_room_info(summary)
    num_guests = extract_guest_count(summary, description)
    reservation_code = extract_reservation_code(summary, description)
    email = extract_email(description)
    phone = extract_phone(description)
    total_amount = extract_amount(description)

    code = reservation_code or uid
    special_requests = BOOKED_VIA_AIRBNB
    if reservation_code:
        special_requests = f"{BOOKED_VIA_AIRBNB} (Reservation: {reservation_code})"

    extracted_info = f'Summary: "{summary}"'
    if description:
        extracted_info += f', Description: "{description}"'
    if reservation_code:
        extracted_info += f", Code: {reservation_code}"

    return GuestInfo(
        guest_name=guest_name or DEFAULT_GUEST_NAME,
        room_info=room_info or DEFAULT_ROOM_INFO,
        num_guests=num_guests or DEFAULT_NUM_GUESTS,
        reservation_code=code,
        email=email or UNAVAILABLE_IN_ICAL,
        phone=phone or UNAVAILABLE_IN_ICAL,
        total_amount=total_amount or DEFAULT_TOTAL_AMOUNT,
        special_requests=special_requests,
        extracted_info=extracted_info,
        data_limitations=DataLimitations(
            email=email is None,
            phone=phone is None,
            payment_amount=total_amount is None,
            guest_count=num_guests is None,
        ),
    )
