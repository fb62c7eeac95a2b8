"""
iCal Parser

Airbnb iCal 텍스트를 VEVENT 단위로 읽어서 필요한 필드만 뽑는다.
- icalendar 로 파싱 (line unfolding / 텍스트 unescape 는 라이브러리가 처리)
- SUMMARY / DTSTART / DTEND / DESCRIPTION / UID / STATUS 만 사용
- DTSTART 또는 DTEND 가 없는 이벤트는 스킵 (날짜를 모르면 달력에 못 올림)
- 날짜는 일 단위로만 다룸 (시간/타임존 버림, Airbnb 체크인/아웃은 하루 단위)
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from icalendar import Calendar

logger = logging.getLogger(__name__)


class IcalParseError(ValueError):
    """iCal 값 하나 또는 피드 전체를 해석할 수 없음"""


@dataclass(frozen=True)
class CalendarEvent:
    """파싱된 VEVENT 하나 (동기화 1회 동안만 존재, 그대로 저장하지 않음)"""
    uid: str
    summary: str
    description: str
    start_date: date
    end_date: date
    status: str = ""
    uid_generated: bool = False


def parse_ical_date(value: str) -> str:
    """
    iCal 날짜 토큰 → 'YYYY-MM-DD'

    - 20231225          → 2023-12-25
    - 20231225T140000Z  → 2023-12-25 (시간/타임존 버림, 변환 없음)

    문자열 파싱 대신 고정 폭 슬라이싱 (로케일 영향 X).
    """
    token = (value or "").strip()

    if "T" in token:
        date_part, _, time_part = token.partition("T")
        time_digits = time_part.rstrip("Zz")
        if len(time_digits) < 6 or not time_digits[:6].isdigit():
            raise IcalParseError(f"Invalid iCal date-time: {value!r}")
        # 시/분/초 는 검증만 하고 버림
        hour, minute, second = int(time_digits[0:2]), int(time_digits[2:4]), int(time_digits[4:6])
        if hour > 23 or minute > 59 or second > 60:
            raise IcalParseError(f"Invalid iCal time: {value!r}")
    else:
        date_part = token

    if len(date_part) != 8 or not date_part.isdigit():
        raise IcalParseError(f"Invalid iCal date: {value!r}")

    year, month, day = date_part[0:4], date_part[4:6], date_part[6:8]
    try:
        date(int(year), int(month), int(day))
    except ValueError as e:
        raise IcalParseError(f"Invalid iCal date: {value!r}") from e

    return f"{year}-{month}-{day}"


def to_date(value: str) -> date:
    """iCal 날짜 토큰 → date"""
    return date.fromisoformat(parse_ical_date(value))


def _first(value: Any) -> Any:
    # 같은 속성이 여러 번 나오면 icalendar 는 리스트를 돌려줌
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _raw_token(component, name: str) -> Optional[str]:
    """DTSTART/DTEND 의 원래 토큰 (예: '20240105', '20240105T150000Z')"""
    prop = _first(component.get(name))
    if prop is None:
        return None
    raw = prop.to_ical()
    return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)


def _text(component, name: str) -> str:
    value = _first(component.get(name))
    return str(value) if value is not None else ""


def synthesize_uid(dtstart: str, dtend: str, summary: str, occurrence: int = 0) -> str:
    """
    UID 없는 이벤트용 대체 UID.

    같은 피드를 다시 받아도 같은 값이 나오도록 내용 해시를 쓴다.
    완전히 같은 이벤트가 여러 개면 occurrence 로 구분.
    """
    digest = hashlib.sha1(f"{dtstart}|{dtend}|{summary}".encode("utf-8")).hexdigest()[:16]
    uid = f"generated-{digest}"
    if occurrence:
        uid = f"{uid}-{occurrence}"
    return uid


def tokenize_ical(ical_data: str) -> list[CalendarEvent]:
    """
    iCal 텍스트 → CalendarEvent 리스트

    Args:
        ical_data: iCal 원문

    Returns:
        DTSTART/DTEND 가 있는 VEVENT 마다 정확히 하나씩

    Raises:
        IcalParseError: 피드 구조 자체가 깨져서 icalendar 가 읽지 못함
    """
    if not (ical_data or "").strip():
        return []

    try:
        cal = Calendar.from_ical(ical_data)
    except ValueError as e:
        raise IcalParseError(f"Malformed iCal feed: {e}") from e

    events: list[CalendarEvent] = []
    seen_generated: dict[str, int] = {}

    for index, component in enumerate(cal.walk("VEVENT"), start=1):
        dtstart = _raw_token(component, "DTSTART")
        dtend = _raw_token(component, "DTEND")
        if not dtstart or not dtend:
            logger.debug(f"ICAL_PARSER: Skipping event #{index} without DTSTART/DTEND")
            continue

        try:
            start_date = to_date(dtstart)
            end_date = to_date(dtend)
        except IcalParseError as e:
            logger.warning(f"ICAL_PARSER: Skipping event #{index}: {e}")
            continue

        summary = _text(component, "SUMMARY")
        description = _text(component, "DESCRIPTION")
        status = _text(component, "STATUS").upper()

        uid = _text(component, "UID").strip()
        uid_generated = False
        if not uid:
            base = synthesize_uid(dtstart, dtend, summary)
            occurrence = seen_generated.get(base, 0)
            seen_generated[base] = occurrence + 1
            uid = synthesize_uid(dtstart, dtend, summary, occurrence)
            uid_generated = True

        events.append(CalendarEvent(
            uid=uid,
            summary=summary,
            description=description,
            start_date=start_date,
            end_date=end_date,
            status=status,
            uid_generated=uid_generated,
        ))

    return events
