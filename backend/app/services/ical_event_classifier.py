"""
iCal Event Classifier: Airbnb VEVENT → booking / blocked

핵심 원칙:
- 규칙은 "순서"가 전부다. 위에서부터 처음 매칭되는 규칙이 이긴다.
  (애매한 실제 SUMMARY 들이 우선순위에 의존하므로 순서 바꾸지 말 것)
- 판단 불가 이벤트는 booking 으로 본다.
  빈 날짜로 잘못 보면 이중 예약, 예약으로 잘못 보면 하루 막히는 것뿐.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from app.services.ical_parser import CalendarEvent


class EventType(str, Enum):
    BOOKING = "booking"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class ClassificationReason(str, Enum):
    RESERVED_BOOKING = "reserved_booking"
    GUEST_NAME_DETECTED = "guest_name_detected"
    NOT_AVAILABLE_BLOCKED = "not_available_blocked"
    EXPLICIT_BLOCKED_INDICATORS = "explicit_blocked_indicators"
    BOOKING_KEYWORDS_DETECTED = "booking_keywords_detected"
    CANCELLED_STATUS = "cancelled_status"
    TENTATIVE_BOOKING = "tentative_booking"
    DEFAULT_CLASSIFICATION = "default_classification"


@dataclass(frozen=True)
class Classification:
    type: EventType
    reason: ClassificationReason

    @property
    def is_booking(self) -> bool:
        return self.type == EventType.BOOKING

    @property
    def is_blocked(self) -> bool:
        return self.type == EventType.BLOCKED


@dataclass(frozen=True)
class EventText:
    """규칙 평가용 텍스트 (원문 + 소문자)"""
    summary: str
    description: str
    status: str

    @property
    def summary_lower(self) -> str:
        return self.summary.lower()

    @property
    def description_lower(self) -> str:
        return self.description.lower()

    @property
    def status_lower(self) -> str:
        return self.status.lower()


@dataclass(frozen=True)
class ClassificationRule:
    """
    규칙 하나.

    - predicate: EventText → bool
    - result: 매칭 시 이벤트 타입
    - reason: 어떤 규칙이 걸렸는지 (동기화 데이터에 함께 저장)
    """
    predicate: Callable[[EventText], bool]
    result: EventType
    reason: ClassificationReason


# Airbnb 는 게스트 이름을 SUMMARY 에 그대로 넣는 경우가 있음 ("John Smith", "John - Smith")
GUEST_NAME_PATTERN = re.compile(r"^[A-Za-z\s]+(?:-\s*[A-Za-z\s]+)?$")

BLOCKED_INDICATORS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"blocked\s*out",
        r"calendar\s*blocked",
        r"no\s*availability",
        r"closed",
        r"maintenance",
        r"offline",
        r"blocked\s*by\s*host",
        r"host\s*blocked",
        r"calendar\s*unavailable",
        r"blocked\s*calendar",
        r"unavailable",
        r"out\s*of\s*service",
    )
)

BOOKING_KEYWORDS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"guest",
        r"booking",
        r"reservation",
        r"confirmed",
        r"paid",
        r"booked",
        r"check-in",
        r"check-out",
        r"stay",
        r"visit",
        r"airbnb",
        r"bnb",
    )
)


def _matches_any(patterns: tuple[re.Pattern[str], ...], text: EventText) -> bool:
    return any(p.search(text.summary) or p.search(text.description) for p in patterns)


def _is_guest_name(text: EventText) -> bool:
    return (
        GUEST_NAME_PATTERN.match(text.summary.strip()) is not None
        and "not available" not in text.summary_lower
    )


# 평가 순서 = 우선순위
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    # 1. "Reserved" = Airbnb 표준 예약 표시
    ClassificationRule(
        predicate=lambda t: "reserved" in t.summary_lower,
        result=EventType.BOOKING,
        reason=ClassificationReason.RESERVED_BOOKING,
    ),
    # 2. SUMMARY 가 사람 이름처럼 생김
    ClassificationRule(
        predicate=_is_guest_name,
        result=EventType.BOOKING,
        reason=ClassificationReason.GUEST_NAME_DETECTED,
    ),
    # 3. "Not available" = 호스트가 직접 막음
    ClassificationRule(
        predicate=lambda t: "not available" in t.summary_lower
        or "not available" in t.description_lower,
        result=EventType.BLOCKED,
        reason=ClassificationReason.NOT_AVAILABLE_BLOCKED,
    ),
    # 4. 명시적 차단 키워드
    ClassificationRule(
        predicate=lambda t: _matches_any(BLOCKED_INDICATORS, t),
        result=EventType.BLOCKED,
        reason=ClassificationReason.EXPLICIT_BLOCKED_INDICATORS,
    ),
    # 5. 예약 관련 키워드
    ClassificationRule(
        predicate=lambda t: _matches_any(BOOKING_KEYWORDS, t),
        result=EventType.BOOKING,
        reason=ClassificationReason.BOOKING_KEYWORDS_DETECTED,
    ),
    # 6~7. STATUS
    ClassificationRule(
        predicate=lambda t: "cancelled" in t.status_lower,
        result=EventType.BLOCKED,
        reason=ClassificationReason.CANCELLED_STATUS,
    ),
    ClassificationRule(
        predicate=lambda t: "tentative" in t.status_lower,
        result=EventType.BOOKING,
        reason=ClassificationReason.TENTATIVE_BOOKING,
    ),
)

DEFAULT_CLASSIFICATION = Classification(
    type=EventType.BOOKING,
    reason=ClassificationReason.DEFAULT_CLASSIFICATION,
)


def classify(summary: str, description: str = "", status: str = "") -> Classification:
    """
    규칙을 순서대로 평가해서 처음 매칭된 결과 반환.
    아무것도 안 걸리면 booking (default_classification).
    """
    text = EventText(
        summary=summary or "",
        description=description or "",
        status=status or "",
    )
    for rule in CLASSIFICATION_RULES:
        if rule.predicate(text):
            return Classification(type=rule.result, reason=rule.reason)
    return DEFAULT_CLASSIFICATION


def classify_event(event: CalendarEvent) -> Classification:
    return classify(event.summary, event.description, event.status)


@dataclass(frozen=True)
class ClassifiedEvent:
    event: CalendarEvent
    classification: Classification


def partition_events(
    events: list[CalendarEvent],
) -> tuple[list[ClassifiedEvent], list[ClassifiedEvent]]:
    """
    이벤트를 (booking, blocked) 두 묶음으로 분리.
    unknown 은 현재 규칙상 나오지 않지만 나오더라도 어느 쪽에도 넣지 않는다.
    """
    bookings: list[ClassifiedEvent] = []
    blocked: list[ClassifiedEvent] = []
    for event in events:
        classified = ClassifiedEvent(event=event, classification=classify_event(event))
        if classified.classification.is_booking:
            bookings.append(classified)
        elif classified.classification.is_blocked:
            blocked.append(classified)
    return bookings, blocked
