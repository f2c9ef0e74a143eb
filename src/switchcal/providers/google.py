"""
Google Calendar REST provider.

Talks to the Calendar List and Events endpoints directly with a bearer
token instead of going through Google's CalDAV surface.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from urllib.parse import quote

import requests

from switchcal.models import DEFAULT_CALENDAR_COLOR
from switchcal.models import Account
from switchcal.models import AuthenticationError
from switchcal.models import Calendar
from switchcal.models import DecodeError
from switchcal.models import Event
from switchcal.models import EventStatus
from switchcal.models import ProviderStatusError
from switchcal.models import TransportError
from switchcal.providers.base import Provider

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
MAX_RESULTS = 250

_READ_ONLY_ROLES = {"reader", "freeBusyReader"}


# ---------------------------------------------------------------------------
# JSON <-> Event
# ---------------------------------------------------------------------------


def _parse_rfc3339(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparseable timestamp %r ignored", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_when(when: dict | None) -> tuple[datetime | None, bool]:
    """Return (instant, all_day) for a Google start/end object."""
    if not when:
        return None, False
    if when.get("date"):
        try:
            day = date.fromisoformat(when["date"])
        except ValueError:
            return None, True
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc), True
    return _parse_rfc3339(when.get("dateTime")), False


def event_from_json(item: dict, calendar_id: str) -> Event:
    start, all_day = _parse_when(item.get("start"))
    end, _ = _parse_when(item.get("end"))
    if end is None and start is not None:
        end = start + timedelta(days=1) if all_day else start

    try:
        status = EventStatus(item.get("status") or "confirmed")
    except ValueError:
        status = EventStatus.CONFIRMED

    reminders = []
    for override in (item.get("reminders") or {}).get("overrides") or []:
        if "minutes" in override:
            reminders.append(int(override["minutes"]))

    return Event(
        id=item["id"],
        calendar_id=calendar_id,
        uid=item.get("iCalUID") or item["id"],
        title=item.get("summary", ""),
        description=item.get("description", ""),
        location=item.get("location", ""),
        start=start,
        end=end,
        all_day=all_day,
        reminders=reminders,
        created=_parse_rfc3339(item.get("created")),
        modified=_parse_rfc3339(item.get("updated")),
        etag=item.get("etag", ""),
        status=status,
        cancelled=status == EventStatus.CANCELLED,
    )


def event_to_json(event: Event) -> dict:
    if event.all_day:
        start = {"date": event.start.date().isoformat()}
        end = {"date": event.end.date().isoformat()}
    else:
        start = {"dateTime": _rfc3339(event.start)}
        end = {"dateTime": _rfc3339(event.end)}
    body = {
        "summary": event.title,
        "description": event.description,
        "location": event.location,
        "start": start,
        "end": end,
        "status": event.status.value,
    }
    if event.uid and event.uid != event.id:
        body["iCalUID"] = event.uid
    if event.reminders:
        body["reminders"] = {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": m} for m in event.reminders],
        }
    return body


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class GoogleProvider(Provider):
    """Google Calendar through its REST API."""

    def __init__(self, account: Account, token_manager=None, session: requests.Session | None = None):
        super().__init__(account, token_manager)
        self._session = session or requests.Session()

    def authenticate(self) -> None:
        self._ensure_fresh_token()
        if not self._account.access_token:
            raise AuthenticationError(f"{self.name}: no access token")
        self._authenticated = True

    # ---- #

    def _request(self, method: str, path: str, operation: str, **kwargs) -> requests.Response:
        self._require_auth()
        self._ensure_fresh_token()
        headers = {"Authorization": f"Bearer {self._account.access_token}"}
        try:
            response = self._session.request(method, f"{GOOGLE_CALENDAR_API}{path}", headers=headers, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{operation} failed: {e}") from e
        if not 200 <= response.status_code < 300:
            raise ProviderStatusError(operation, response.status_code, response.text)
        return response

    @staticmethod
    def _json(response: requests.Response, operation: str) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"{operation}: response body is not JSON") from e
        if not isinstance(data, dict):
            raise DecodeError(f"{operation}: expected a JSON object, got {type(data).__name__}")
        return data

    def _paged(self, path: str, operation: str, params: dict) -> list[dict]:
        items = []
        params = dict(params)
        while True:
            data = self._json(self._request("GET", path, operation, params=params), operation)
            items.extend(data.get("items") or [])
            token = data.get("nextPageToken")
            if not token:
                return items
            params["pageToken"] = token

    @staticmethod
    def _events_path(calendar_id: str) -> str:
        return f"/calendars/{quote(calendar_id, safe='')}/events"

    # ---- #

    def list_calendars(self) -> list[Calendar]:
        items = self._paged("/users/me/calendarList", "calendar list", {})
        calendars = []
        for item in items:
            calendars.append(
                Calendar(
                    id=item["id"],
                    account_id=self._account.id,
                    name=item.get("summaryOverride") or item.get("summary", ""),
                    description=item.get("description", ""),
                    color=item.get("backgroundColor") or DEFAULT_CALENDAR_COLOR,
                    read_only=item.get("accessRole") in _READ_ONLY_ROLES,
                )
            )
        logger.debug("%s: %d calendar(s)", self.name, len(calendars))
        return calendars

    def get_events(self, calendar_id: str, start: datetime, end: datetime) -> list[Event]:
        params = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "maxResults": MAX_RESULTS,
        }
        items = self._paged(self._events_path(calendar_id), "event list", params)
        events = []
        for item in items:
            if not isinstance(item, dict) or not item.get("id"):
                logger.debug("Skipping event item without id in %s", calendar_id)
                continue
            if item.get("status") == "cancelled":
                continue
            events.append(event_from_json(item, calendar_id))
        return events

    def create_event(self, calendar_id: str, event: Event) -> Event:
        response = self._request("POST", self._events_path(calendar_id), "create event", json=event_to_json(event))
        data = self._json(response, "create event")
        return event_from_json(data, calendar_id)

    def update_event(self, calendar_id: str, event: Event) -> Event:
        path = f"{self._events_path(calendar_id)}/{quote(event.id, safe='')}"
        data = self._json(self._request("PUT", path, "update event", json=event_to_json(event)), "update event")
        return event_from_json(data, calendar_id)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        path = f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}"
        self._request("DELETE", path, "delete event")
