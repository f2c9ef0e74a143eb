"""
Shared pytest fixtures and entity/iCal helpers.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from switchcal.db import CalendarStore
from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import Calendar
from switchcal.models import Event
from switchcal.models import SyncConfig
from switchcal.models import SyncStats


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_account(
    account_id: str = "acc-1",
    account_type: AccountType = AccountType.CALDAV,
    **kwargs,
) -> Account:
    defaults = {
        "name": f"Account {account_id}",
        "server_url": "https://dav.example.com/",
        "username": "alice",
        "app_password": "secret",
    }
    if account_type == AccountType.GOOGLE:
        defaults = {
            "name": "Google - alice@example.com",
            "email": "alice@example.com",
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_expiry": datetime.now(timezone.utc) + timedelta(hours=1),
        }
    elif account_type == AccountType.LOCAL:
        defaults = {"name": "Local"}
    defaults.update(kwargs)
    return Account(id=account_id, type=account_type, **defaults)


def make_calendar(calendar_id: str = "cal-1", account_id: str = "acc-1", **kwargs) -> Calendar:
    kwargs.setdefault("name", f"Calendar {calendar_id}")
    return Calendar(id=calendar_id, account_id=account_id, **kwargs)


def make_event(
    event_id: str,
    calendar_id: str = "cal-1",
    start: datetime | None = None,
    end: datetime | None = None,
    **kwargs,
) -> Event:
    start = start or utc(2024, 6, 10, 9)
    end = end or start + timedelta(hours=1)
    kwargs.setdefault("title", f"Event {event_id}")
    kwargs.setdefault("uid", event_id)
    return Event(id=event_id, calendar_id=calendar_id, start=start, end=end, **kwargs)


def make_vcalendar(
    uid: str,
    summary: str = "Test Event",
    dtstart: str = "DTSTART:20240610T090000Z",
    dtend: str | None = "DTEND:20240610T100000Z",
    extra: tuple = (),
) -> str:
    """Return a minimal VCALENDAR wrapping one VEVENT."""
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Test//EN",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        "DTSTAMP:20240601T000000Z",
        dtstart,
    ]
    if dtend:
        lines.append(dtend)
    lines.extend(extra)
    lines += ["END:VEVENT", "END:VCALENDAR", ""]
    return "\r\n".join(lines)


@pytest.fixture
def store(tmp_path):
    """Connected CalendarStore backed by a temporary file."""
    with CalendarStore(tmp_path / "switchcal.db") as s:
        yield s


@pytest.fixture
def seeded_store(store):
    """Store holding one CalDAV account with one visible calendar."""
    store.save_account(make_account("acc-1"))
    store.save_calendar(make_calendar("cal-1", "acc-1"))
    return store


@pytest.fixture
def config(tmp_path):
    return SyncConfig(db_path=tmp_path / "switchcal.db")


@pytest.fixture
def stats():
    return SyncStats()


@pytest.fixture
def logger():
    return logging.getLogger("test")
