"""
Pure data models. No network or sqlite imports.
"""

import uuid
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import timezone
from enum import Enum
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".local/share/switchcal/switchcal.db"
DEFAULT_CONFIG = Path.home() / ".config/switchcal.conf"

DEFAULT_CALENDAR_COLOR = "#4285f4"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class AuthenticationError(CalendarSyncError):
    """Missing, invalid or expired credentials with no way to renew them."""


class NotAuthenticatedError(AuthenticationError):
    """A provider operation was called before authenticate() succeeded."""


class TokenRefreshError(AuthenticationError):
    """The refresh-token grant failed or was impossible."""


class OAuthError(AuthenticationError):
    """The authorization-code flow failed (denied, timed out, bad exchange)."""


class TransportError(CalendarSyncError):
    """Connection failure talking to a remote provider."""


class ProviderStatusError(TransportError):
    """A remote provider answered with a non-2xx status."""

    def __init__(self, operation: str, status: int, body: str = ""):
        self.operation = operation
        self.status = status
        self.body = body
        detail = f": {body[:200]}" if body else ""
        super().__init__(f"{operation} failed with HTTP {status}{detail}")


class DecodeError(CalendarSyncError):
    """A calendar object could not be decoded."""


class StoreError(CalendarSyncError):
    """Persistence failure in the local store."""


class NotFoundError(StoreError):
    """The requested row does not exist."""


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AccountType(str, Enum):
    LOCAL = "local"
    GOOGLE = "google"
    APPLE = "apple"
    OUTLOOK = "outlook"
    SAMSUNG = "samsung"
    CALDAV = "caldav"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Weekday(str, Enum):
    MONDAY = "MO"
    TUESDAY = "TU"
    WEDNESDAY = "WE"
    THURSDAY = "TH"
    FRIDAY = "FR"
    SATURDAY = "SA"
    SUNDAY = "SU"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def new_account_id() -> str:
    return f"acc-{uuid.uuid4()}"


def new_calendar_id() -> str:
    return f"cal-{uuid.uuid4()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecurrenceRule:
    """How an event repeats. Stored and round-tripped, never expanded."""

    frequency: Frequency
    interval: int = 1
    count: int = 0  # 0 = unbounded
    until: datetime | None = None  # None = unbounded
    by_day: list[Weekday] = field(default_factory=list)
    by_month_day: list[int] = field(default_factory=list)
    by_month: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "count": self.count,
            "until": self.until.isoformat() if self.until else None,
            "by_day": [d.value for d in self.by_day],
            "by_monthday": list(self.by_month_day),
            "by_month": list(self.by_month),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecurrenceRule":
        until = None
        if data.get("until"):
            until = datetime.fromisoformat(data["until"])
        return cls(
            frequency=Frequency(data["frequency"]),
            interval=data.get("interval") or 1,
            count=data.get("count") or 0,
            until=until,
            by_day=[Weekday(d) for d in data.get("by_day") or []],
            by_month_day=list(data.get("by_monthday") or []),
            by_month=list(data.get("by_month") or []),
        )


@dataclass
class Account:
    """A configured calendar source (local or remote)."""

    id: str
    name: str
    type: AccountType
    email: str = ""
    enabled: bool = True
    server_url: str = ""
    username: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expiry: datetime | None = None
    app_password: str = ""
    last_sync: datetime | None = None

    @property
    def uses_oauth(self) -> bool:
        return self.type == AccountType.GOOGLE

    @property
    def has_credentials(self) -> bool:
        if self.type == AccountType.LOCAL:
            return False
        if self.uses_oauth:
            return bool(self.access_token or self.refresh_token)
        return bool(self.username and self.app_password)

    def token_expired(self, now: datetime | None = None) -> bool:
        """A missing expiry counts as expired."""
        if self.token_expiry is None:
            return True
        return (now or utcnow()) >= self.token_expiry

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id!r}, name={self.name!r}, type={self.type.value!r}, "
            f"email={self.email!r}, enabled={self.enabled!r})"
        )


@dataclass
class Calendar:
    """A named event container owned by one account."""

    id: str
    account_id: str
    name: str
    description: str = ""
    color: str = DEFAULT_CALENDAR_COLOR
    visible: bool = True
    read_only: bool = False
    sync_token: str = ""
    last_sync: datetime | None = None


@dataclass
class Event:
    """A single calendar entry owned by one calendar."""

    id: str
    calendar_id: str = ""
    uid: str = ""
    title: str = ""
    description: str = ""
    location: str = ""
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    color: str = ""
    recurrence: RecurrenceRule | None = None
    reminders: list[int] = field(default_factory=list)
    created: datetime | None = None
    modified: datetime | None = None
    etag: str = ""
    status: EventStatus = EventStatus.CONFIRMED
    cancelled: bool = False

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    def overlaps(self, other: "Event") -> bool:
        return self.start < other.end and self.end > other.start

    def contains_time(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def is_on_date(self, day: date | datetime) -> bool:
        """True when the event intersects [day 00:00, day+1 00:00)."""
        if isinstance(day, datetime):
            tz = day.tzinfo or self.start.tzinfo
            day = day.date()
        else:
            tz = self.start.tzinfo
        day_start = datetime.combine(day, time.min, tzinfo=tz)
        day_end = day_start + timedelta(hours=24)
        return self.start < day_end and self.end > day_start


# ---------------------------------------------------------------------------
# Configuration / results
# ---------------------------------------------------------------------------


@dataclass
class SyncConfig:
    """Configuration for a sync run."""

    db_path: Path = DEFAULT_DB_PATH
    past_days: int = 30
    future_days: int = 90
    prune_missing: bool = True
    google_backend: str = "rest"  # 'rest' or 'caldav'
    max_workers: int = 4
    verbose: bool = False

    def window(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Return the [start, end) fetch window around now."""
        now = now or utcnow()
        return now - timedelta(days=self.past_days), now + timedelta(days=self.future_days)


@dataclass
class SyncStats:
    """Statistics for one account's sync."""

    calendars: int = 0
    added: int = 0
    modified: int = 0
    cancelled: int = 0
    deleted: int = 0
    errors: int = 0
    error: str | None = None  # set when the whole account sync aborted
