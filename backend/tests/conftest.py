"""Shared fixtures: per-test SQLite database, iCal feed builders, mock HTTP."""

import os
import tempfile

# app.core.config 가 import 되기 전에 설정해야 함
_DB_DIR = tempfile.mkdtemp(prefix="homestay-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ICAL_SYNC_ENABLED"] = "false"
os.environ["ICAL_PROXY_URL"] = ""
os.environ["ICAL_VANISHED_BOOKING_POLICY"] = "keep"

from datetime import date  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

import app.domain.models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.db.session import SessionLocal, engine  # noqa: E402
from app.domain.models.room import Room  # noqa: E402


@pytest.fixture
def session_factory():
    """Fresh schema for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield SessionLocal
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def room(session_factory):
    with session_factory() as session:
        row = Room(name="Garden Room", room_number="101", check_in_time="2:00 PM", check_out_time="11:00 AM")
        session.add(row)
        session.commit()
        session.refresh(row)
        session.expunge(row)
    return row


def vevent(uid, start, end, summary, description="", status=None):
    """Build one VEVENT block. start/end are date objects or raw iCal tokens."""
    def prop(name, value):
        if isinstance(value, date):
            return f"{name};VALUE=DATE:{value.strftime('%Y%m%d')}"
        return f"{name}:{value}"

    lines = ["BEGIN:VEVENT", prop("DTSTART", start), prop("DTEND", end)]
    if uid is not None:
        lines.append(f"UID:{uid}")
    lines.append(f"SUMMARY:{summary}")
    if description:
        lines.append(f"DESCRIPTION:{description}")
    if status:
        lines.append(f"STATUS:{status}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def make_feed(*events):
    header = [
        "BEGIN:VCALENDAR",
        "PRODID:-//Airbnb Inc//Hosting Calendar 0.8.8//EN",
        "CALSCALE:GREGORIAN",
        "VERSION:2.0",
    ]
    return "\r\n".join(header + list(events) + ["END:VCALENDAR"]) + "\r\n"


def feed_client(routes):
    """
    httpx.AsyncClient answering from a {url: body | status_code} map.
    Unknown URLs get 404.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        answer = routes.get(url, 404)
        if isinstance(answer, int):
            return httpx.Response(answer, text="error")
        return httpx.Response(200, text=answer, headers={"Content-Type": "text/calendar"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
