"""
CalDAV provider (generic servers, iCloud, Google's CalDAV surface).

Calendar ids are the calendar collection URLs; event objects live at
``{calendar_url}/{uid}.ics``.
"""

import logging
from datetime import datetime
from datetime import timezone
from urllib.parse import quote

import caldav
import requests
from caldav.elements import cdav
from caldav.elements import dav
from caldav.elements import ical
from caldav.lib.error import DAVError

from switchcal.ical_codec import parse_event
from switchcal.ical_codec import serialize_event
from switchcal.models import DEFAULT_CALENDAR_COLOR
from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import AuthenticationError
from switchcal.models import Calendar
from switchcal.models import DecodeError
from switchcal.models import Event
from switchcal.models import ProviderStatusError
from switchcal.models import TransportError
from switchcal.providers.base import Provider

logger = logging.getLogger(__name__)

GOOGLE_CALDAV_URL = "https://apidata.googleusercontent.com/caldav/v2/"

CALDAV_SERVERS = {
    AccountType.GOOGLE: GOOGLE_CALDAV_URL,
    AccountType.APPLE: "https://caldav.icloud.com/",
    AccountType.OUTLOOK: "https://outlook.office365.com/caldav/",
    AccountType.SAMSUNG: "https://caldav.samsung.com/",
}

_ICS_CONTENT_TYPE = 'text/calendar; charset="utf-8"'


def google_caldav_url(email: str) -> str:
    return f"{GOOGLE_CALDAV_URL}{quote(email, safe='')}/"


def event_url(calendar_id: str, uid: str) -> str:
    return f"{calendar_id.rstrip('/')}/{quote(uid, safe='@')}.ics"


class BearerAuth(requests.auth.AuthBase):
    """Attach the account's current access token to each request."""

    def __init__(self, provider: "CalDAVProvider"):
        self._provider = provider

    def __call__(self, request):
        request.headers["Authorization"] = f"Bearer {self._provider.account.access_token}"
        return request


class CalDAVProvider(Provider):
    """
    Provider speaking CalDAV through the caldav library.

    Google accounts authenticate with an OAuth bearer token and list their
    calendars directly at the account's server URL. All other accounts use
    basic credentials and must pass calendar-home-set discovery.
    """

    def __init__(self, account: Account, token_manager=None, client_factory=None):
        super().__init__(account, token_manager)
        self._client_factory = client_factory or caldav.DAVClient
        self._client = None
        self._principal = None

    def _server_url(self) -> str:
        if self._account.server_url:
            return self._account.server_url
        if self._account.type == AccountType.GOOGLE and self._account.email:
            return google_caldav_url(self._account.email)
        return CALDAV_SERVERS.get(self._account.type, "")

    # ---- #

    def authenticate(self) -> None:
        url = self._server_url()
        if not url:
            raise AuthenticationError(f"{self.name}: no CalDAV server URL configured")

        if self._account.uses_oauth:
            self._ensure_fresh_token()
            if not self._account.access_token:
                raise AuthenticationError(f"{self.name}: no access token")
            self._client = self._client_factory(url=url, auth=BearerAuth(self))
            self._authenticated = True
            logger.debug("Using Google CalDAV endpoint %s", url)
            return

        if not (self._account.username and self._account.app_password):
            raise AuthenticationError(f"{self.name}: username and app password are required")
        self._client = self._client_factory(
            url=url,
            username=self._account.username,
            password=self._account.app_password,
        )
        try:
            self._principal = self._client.principal()
            home = self._principal.calendar_home_set
        except DAVError as e:
            raise AuthenticationError(f"{self.name}: calendar-home-set discovery failed: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"{self.name}: cannot reach {url}: {e}") from e
        self._authenticated = True
        logger.debug("Discovered calendar home %s for %s", getattr(home, "url", home), self.name)

    def list_calendars(self) -> list[Calendar]:
        self._require_auth()
        self._ensure_fresh_token()
        try:
            if self._account.uses_oauth:
                remote = caldav.CalendarSet(client=self._client, url=self._server_url()).calendars()
            else:
                remote = self._principal.calendars()
        except (DAVError, requests.RequestException) as e:
            raise TransportError(f"{self.name}: listing calendars failed: {e}") from e

        calendars = []
        for cal in remote:
            name = cal.name or ""
            if not name and self._account.type == AccountType.GOOGLE:
                name = "Primary Calendar"
            color, description = self._calendar_properties(cal)
            calendars.append(
                Calendar(
                    id=str(cal.url),
                    account_id=self._account.id,
                    name=name or "Unnamed",
                    description=description,
                    color=color,
                )
            )
        logger.debug("%s: %d calendar(s)", self.name, len(calendars))
        return calendars

    def _calendar_properties(self, cal) -> tuple[str, str]:
        color = DEFAULT_CALENDAR_COLOR
        description = ""
        try:
            props = cal.get_properties([ical.CalendarColor(), cdav.CalendarDescription()])
        except (DAVError, requests.RequestException) as e:
            logger.debug("No properties for %s: %s", cal.url, e)
            return color, description
        value = props.get(ical.CalendarColor.tag)
        if isinstance(value, str) and value.strip().startswith("#"):
            # servers often send #RRGGBBAA
            color = value.strip()[:7]
        value = props.get(cdav.CalendarDescription.tag)
        if isinstance(value, str):
            description = value.strip()
        return color, description

    def get_events(self, calendar_id: str, start: datetime, end: datetime) -> list[Event]:
        self._require_auth()
        self._ensure_fresh_token()
        try:
            cal = self._client.calendar(url=calendar_id)
            objects = cal.search(
                start=start.astimezone(timezone.utc),
                end=end.astimezone(timezone.utc),
                event=True,
                expand=False,
            )
        except (DAVError, requests.RequestException) as e:
            raise TransportError(f"{self.name}: event query on {calendar_id} failed: {e}") from e

        events = []
        for obj in objects:
            props = getattr(obj, "props", None) or {}
            try:
                event = parse_event(obj.data, etag=props.get(dav.GetEtag.tag))
            except DecodeError as e:
                logger.debug("Skipping undecodable object %s: %s", obj.url, e)
                continue
            event.calendar_id = calendar_id
            events.append(event)
        return events

    # ---- #

    def _put(self, calendar_id: str, event: Event, operation: str) -> Event:
        self._require_auth()
        self._ensure_fresh_token()
        url = event_url(calendar_id, event.uid)
        try:
            response = self._client.put(url, serialize_event(event), {"Content-Type": _ICS_CONTENT_TYPE})
        except (DAVError, requests.RequestException) as e:
            raise TransportError(f"{operation} {url} failed: {e}") from e
        if response.status not in (200, 201, 204):
            raise ProviderStatusError(operation, response.status, str(getattr(response, "raw", "") or ""))
        event.calendar_id = calendar_id
        headers = getattr(response, "headers", None) or {}
        event.etag = headers.get("ETag", event.etag)
        return event

    def create_event(self, calendar_id: str, event: Event) -> Event:
        if not event.id:
            event.id = event.uid
        return self._put(calendar_id, event, "create event")

    def update_event(self, calendar_id: str, event: Event) -> Event:
        return self._put(calendar_id, event, "update event")

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._require_auth()
        self._ensure_fresh_token()
        url = event_url(calendar_id, event_id)
        try:
            response = self._client.delete(url)
        except (DAVError, requests.RequestException) as e:
            raise TransportError(f"delete event {url} failed: {e}") from e
        if response.status not in (200, 204):
            raise ProviderStatusError("delete event", response.status)
