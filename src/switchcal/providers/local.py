from datetime import datetime

from switchcal.models import Calendar
from switchcal.models import Event
from switchcal.providers.base import Provider


class LocalProvider(Provider):
    """Provider for on-device accounts. Every remote operation is a no-op."""

    def authenticate(self) -> None:
        self._authenticated = True

    def list_calendars(self) -> list[Calendar]:
        return []

    def get_events(self, calendar_id: str, start: datetime, end: datetime) -> list[Event]:
        return []

    def create_event(self, calendar_id: str, event: Event) -> Event:
        return event

    def update_event(self, calendar_id: str, event: Event) -> Event:
        return event

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        return None
