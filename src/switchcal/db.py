"""
SQLite persistence for accounts, calendars and events.
"""

import json
import logging
import sqlite3
import threading
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import timezone
from pathlib import Path

from switchcal.models import DEFAULT_CALENDAR_COLOR
from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import Calendar
from switchcal.models import Event
from switchcal.models import EventStatus
from switchcal.models import NotFoundError
from switchcal.models import RecurrenceRule
from switchcal.models import StoreError

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        email TEXT,
        enabled INTEGER DEFAULT 1,
        server_url TEXT,
        username TEXT,
        access_token TEXT,
        refresh_token TEXT,
        token_expiry TEXT,
        app_password TEXT,
        last_sync TEXT
    );

    CREATE TABLE IF NOT EXISTS calendars (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        color TEXT DEFAULT '#4285f4',
        visible INTEGER DEFAULT 1,
        read_only INTEGER DEFAULT 0,
        sync_token TEXT,
        last_sync TEXT,
        FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        calendar_id TEXT NOT NULL,
        uid TEXT,
        title TEXT NOT NULL,
        description TEXT,
        location TEXT,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        all_day INTEGER DEFAULT 0,
        color TEXT,
        recurrence TEXT,
        reminders TEXT,
        created TEXT,
        modified TEXT,
        etag TEXT,
        status TEXT DEFAULT 'confirmed',
        cancelled INTEGER DEFAULT 0,
        FOREIGN KEY (calendar_id) REFERENCES calendars(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_events_calendar ON events(calendar_id);
    CREATE INDEX IF NOT EXISTS idx_events_start ON events(start_time);
    CREATE INDEX IF NOT EXISTS idx_events_end ON events(end_time);
    CREATE INDEX IF NOT EXISTS idx_calendars_account ON calendars(account_id);
"""


# ---------------------------------------------------------------------------
# Column conversion
# ---------------------------------------------------------------------------


def _ts(value: datetime | None) -> str | None:
    """Encode an instant as fixed-width UTC text so that text order is time order.

    Naive datetimes are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _day_ts(value: datetime | None) -> str | None:
    """Encode an all-day instant as UTC midnight of the date it names in its own zone."""
    if value is None:
        return None
    return _ts(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))


def day_bounds(day: date | datetime, tz=None) -> tuple[datetime, datetime]:
    """
    Return [day 00:00, next day 00:00) in the day's own zone, tz, or local time.

    Each bound carries its own UTC offset, so a day spanning a DST change is
    23 or 25 hours long.
    """
    if isinstance(day, datetime):
        tz = day.tzinfo or tz
        day = day.date()
    next_day = day + timedelta(days=1)
    if tz is None:
        return datetime.combine(day, time.min).astimezone(), datetime.combine(next_day, time.min).astimezone()
    return datetime.combine(day, time.min, tzinfo=tz), datetime.combine(next_day, time.min, tzinfo=tz)


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        name=row["name"],
        type=AccountType(row["type"]),
        email=row["email"] or "",
        enabled=bool(row["enabled"]),
        server_url=row["server_url"] or "",
        username=row["username"] or "",
        access_token=row["access_token"] or "",
        refresh_token=row["refresh_token"] or "",
        token_expiry=_parse_ts(row["token_expiry"]),
        app_password=row["app_password"] or "",
        last_sync=_parse_ts(row["last_sync"]),
    )


def _row_to_calendar(row: sqlite3.Row) -> Calendar:
    return Calendar(
        id=row["id"],
        account_id=row["account_id"],
        name=row["name"],
        description=row["description"] or "",
        color=row["color"] or DEFAULT_CALENDAR_COLOR,
        visible=bool(row["visible"]),
        read_only=bool(row["read_only"]),
        sync_token=row["sync_token"] or "",
        last_sync=_parse_ts(row["last_sync"]),
    )


def _row_to_event(row: sqlite3.Row) -> Event:
    recurrence = None
    if row["recurrence"] and row["recurrence"] != "null":
        recurrence = RecurrenceRule.from_dict(json.loads(row["recurrence"]))
    reminders = []
    if row["reminders"] and row["reminders"] != "null":
        reminders = json.loads(row["reminders"])

    return Event(
        id=row["id"],
        calendar_id=row["calendar_id"],
        uid=row["uid"] or "",
        title=row["title"],
        description=row["description"] or "",
        location=row["location"] or "",
        start=_parse_ts(row["start_time"]),
        end=_parse_ts(row["end_time"]),
        all_day=bool(row["all_day"]),
        color=row["color"] or "",
        recurrence=recurrence,
        reminders=reminders,
        created=_parse_ts(row["created"]),
        modified=_parse_ts(row["modified"]),
        etag=row["etag"] or "",
        status=EventStatus(row["status"] or EventStatus.CONFIRMED.value),
        cancelled=bool(row["cancelled"]),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CalendarStore:
    """Single-connection SQLite store for accounts, calendars and events.

    Every statement runs under one lock on one physical connection, and every
    write commits before the lock is released. Saves are upserts implemented
    with ``ON CONFLICT DO UPDATE`` so that updating a parent row never fires
    the ``ON DELETE CASCADE`` on its children.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Open the database and create the schema if needed."""
        if self.conn is not None:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.execute("PRAGMA journal_mode = DELETE")
            self.conn.execute("PRAGMA synchronous = FULL")
            self._init_schema()
            logger.debug("Opened calendar store at %s", self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}") from e

    def _init_schema(self):
        self.conn.executescript(_SCHEMA)
        self.conn.commit()

    def close(self):
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    # ------------------------------------------------------------------ #
    # Low-level helpers                                                    #
    # ------------------------------------------------------------------ #

    def _write(self, sql: str, params: tuple = ()) -> int:
        """Run one mutating statement and commit; return the affected row count."""
        with self._lock:
            if self.conn is None:
                raise StoreError("Store is not connected")
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StoreError(str(e)) from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            if self.conn is None:
                raise StoreError("Store is not connected")
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _query_one(self, sql: str, params: tuple, what: str) -> sqlite3.Row:
        rows = self._query(sql, params)
        if not rows:
            raise NotFoundError(f"{what} not found")
        return rows[0]

    # ------------------------------------------------------------------ #
    # Accounts                                                             #
    # ------------------------------------------------------------------ #

    def save_account(self, account: Account):
        """Insert or update an account. The account type cannot change."""
        changed = self._write(
            """
            INSERT INTO accounts (id, name, type, email, enabled, server_url, username,
                                  access_token, refresh_token, token_expiry, app_password,
                                  last_sync)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                email = excluded.email,
                enabled = excluded.enabled,
                server_url = excluded.server_url,
                username = excluded.username,
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                token_expiry = excluded.token_expiry,
                app_password = excluded.app_password,
                last_sync = excluded.last_sync
            WHERE accounts.type = excluded.type
            """,
            (
                account.id,
                account.name,
                account.type.value,
                account.email,
                int(account.enabled),
                account.server_url,
                account.username,
                account.access_token,
                account.refresh_token,
                _ts(account.token_expiry),
                account.app_password,
                _ts(account.last_sync),
            ),
        )
        if changed == 0:
            # the conflicting row has another type and was left untouched
            existing = self._query("SELECT type FROM accounts WHERE id = ?", (account.id,))
            current = existing[0]["type"] if existing else "unknown"
            raise StoreError(
                f"Account {account.id} is of type {current!r}; "
                f"cannot change it to {account.type.value!r}"
            )

    def get_account(self, account_id: str) -> Account:
        row = self._query_one(
            "SELECT * FROM accounts WHERE id = ?", (account_id,), f"Account {account_id}"
        )
        return _row_to_account(row)

    def get_all_accounts(self) -> list[Account]:
        return [_row_to_account(r) for r in self._query("SELECT * FROM accounts ORDER BY name")]

    def delete_account(self, account_id: str):
        """Delete an account together with its calendars and their events."""
        self._write("DELETE FROM accounts WHERE id = ?", (account_id,))

    # ------------------------------------------------------------------ #
    # Calendars                                                            #
    # ------------------------------------------------------------------ #

    def save_calendar(self, calendar: Calendar):
        self._write(
            """
            INSERT INTO calendars (id, account_id, name, description, color, visible,
                                   read_only, sync_token, last_sync)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                account_id = excluded.account_id,
                name = excluded.name,
                description = excluded.description,
                color = excluded.color,
                visible = excluded.visible,
                read_only = excluded.read_only,
                sync_token = excluded.sync_token,
                last_sync = excluded.last_sync
            """,
            (
                calendar.id,
                calendar.account_id,
                calendar.name,
                calendar.description,
                calendar.color or DEFAULT_CALENDAR_COLOR,
                int(calendar.visible),
                int(calendar.read_only),
                calendar.sync_token,
                _ts(calendar.last_sync),
            ),
        )

    def get_calendar(self, calendar_id: str) -> Calendar:
        row = self._query_one(
            "SELECT * FROM calendars WHERE id = ?", (calendar_id,), f"Calendar {calendar_id}"
        )
        return _row_to_calendar(row)

    def get_calendars_by_account(self, account_id: str) -> list[Calendar]:
        rows = self._query(
            "SELECT * FROM calendars WHERE account_id = ? ORDER BY name", (account_id,)
        )
        return [_row_to_calendar(r) for r in rows]

    def get_all_calendars(self) -> list[Calendar]:
        return [_row_to_calendar(r) for r in self._query("SELECT * FROM calendars ORDER BY name")]

    def get_visible_calendars(self) -> list[Calendar]:
        rows = self._query("SELECT * FROM calendars WHERE visible = 1 ORDER BY name")
        return [_row_to_calendar(r) for r in rows]

    def delete_calendar(self, calendar_id: str):
        """Delete a calendar together with its events."""
        self._write("DELETE FROM calendars WHERE id = ?", (calendar_id,))

    # ------------------------------------------------------------------ #
    # Events                                                               #
    # ------------------------------------------------------------------ #

    def save_event(self, event: Event):
        if event.start is None or event.end is None:
            raise StoreError(f"Event {event.id} has no start or end time")

        encode_when = _day_ts if event.all_day else _ts
        recurrence = json.dumps(event.recurrence.to_dict()) if event.recurrence else None
        self._write(
            """
            INSERT INTO events (id, calendar_id, uid, title, description, location,
                                start_time, end_time, all_day, color, recurrence, reminders,
                                created, modified, etag, status, cancelled)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                calendar_id = excluded.calendar_id,
                uid = excluded.uid,
                title = excluded.title,
                description = excluded.description,
                location = excluded.location,
                start_time = excluded.start_time,
                end_time = excluded.end_time,
                all_day = excluded.all_day,
                color = excluded.color,
                recurrence = excluded.recurrence,
                reminders = excluded.reminders,
                created = excluded.created,
                modified = excluded.modified,
                etag = excluded.etag,
                status = excluded.status,
                cancelled = excluded.cancelled
            """,
            (
                event.id,
                event.calendar_id,
                event.uid,
                event.title,
                event.description,
                event.location,
                encode_when(event.start),
                encode_when(event.end),
                int(event.all_day),
                event.color,
                recurrence,
                json.dumps(list(event.reminders)),
                _ts(event.created),
                _ts(event.modified),
                event.etag,
                event.status.value,
                int(event.cancelled),
            ),
        )

    def get_event(self, event_id: str) -> Event:
        row = self._query_one("SELECT * FROM events WHERE id = ?", (event_id,), f"Event {event_id}")
        return _row_to_event(row)

    def get_events_by_calendar(self, calendar_id: str) -> list[Event]:
        rows = self._query(
            "SELECT * FROM events WHERE calendar_id = ? AND cancelled = 0 ORDER BY start_time",
            (calendar_id,),
        )
        return [_row_to_event(r) for r in rows]

    def get_events_in_range(self, start: datetime, end: datetime) -> list[Event]:
        """Non-cancelled events of visible calendars intersecting [start, end)."""
        rows = self._query(
            """
            SELECT e.* FROM events e
            JOIN calendars c ON e.calendar_id = c.id
            WHERE c.visible = 1 AND e.cancelled = 0
              AND e.start_time < ? AND e.end_time > ?
            ORDER BY e.start_time
            """,
            (_ts(end), _ts(start)),
        )
        return [_row_to_event(r) for r in rows]

    def get_events_for_date(self, day: date | datetime, tz=None) -> list[Event]:
        start, end = day_bounds(day, tz)
        return self.get_events_in_range(start, end)

    def get_event_ids_by_calendar(self, calendar_id: str) -> set[str]:
        """All event ids of a calendar, cancelled ones included."""
        rows = self._query("SELECT id FROM events WHERE calendar_id = ?", (calendar_id,))
        return {r["id"] for r in rows}

    def get_event_ids_in_range(self, calendar_id: str, start: datetime, end: datetime) -> set[str]:
        """Ids of a calendar's events intersecting [start, end), cancelled ones included."""
        rows = self._query(
            "SELECT id FROM events WHERE calendar_id = ? AND start_time < ? AND end_time > ?",
            (calendar_id, _ts(end), _ts(start)),
        )
        return {r["id"] for r in rows}

    def delete_event(self, event_id: str):
        self._write("DELETE FROM events WHERE id = ?", (event_id,))

    def delete_events_by_calendar(self, calendar_id: str) -> int:
        return self._write("DELETE FROM events WHERE calendar_id = ?", (calendar_id,))
