"""
Provider capability set shared by every account type.
"""

import logging
from abc import ABC
from abc import abstractmethod
from datetime import datetime

from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import Calendar
from switchcal.models import Event
from switchcal.models import NotAuthenticatedError
from switchcal.models import TokenRefreshError
from switchcal.models import utcnow

logger = logging.getLogger(__name__)


class Provider(ABC):
    """
    One remote calendar source behind a uniform interface.

    Every remote operation must be preceded by a successful authenticate();
    otherwise NotAuthenticatedError is raised.

    Args:
        account: Account this provider talks for
        token_manager: Token lifecycle used to refresh OAuth access tokens
    """

    def __init__(self, account: Account, token_manager=None):
        self._account = account
        self._tokens = token_manager
        self._authenticated = False

    # ---- #

    @property
    def account(self) -> Account:
        return self._account

    @account.setter
    def account(self, account: Account) -> None:
        self._account = account

    @property
    def name(self) -> str:
        return self._account.name

    @property
    def type(self) -> AccountType:
        return self._account.type

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    # ---- #

    def _require_auth(self) -> None:
        if not self._authenticated:
            raise NotAuthenticatedError(f"{self.name}: authenticate() has not succeeded")

    def _ensure_fresh_token(self) -> None:
        """Refresh an expired OAuth access token before an authenticated request."""
        if not self._account.uses_oauth:
            return
        if self._tokens is not None:
            self._account = self._tokens.ensure_fresh(self._account)
        elif self._account.token_expired():
            raise TokenRefreshError(f"{self.name}: access token expired and no token manager is configured")

    # ---- #

    @abstractmethod
    def authenticate(self) -> None:
        """Establish credentials with the remote side."""

    @abstractmethod
    def list_calendars(self) -> list[Calendar]:
        """Return the remote calendars, owned by this provider's account."""

    @abstractmethod
    def get_events(self, calendar_id: str, start: datetime, end: datetime) -> list[Event]:
        """Return events of one calendar intersecting [start, end)."""

    @abstractmethod
    def create_event(self, calendar_id: str, event: Event) -> Event:
        pass

    @abstractmethod
    def update_event(self, calendar_id: str, event: Event) -> Event:
        pass

    @abstractmethod
    def delete_event(self, calendar_id: str, event_id: str) -> None:
        pass

    def sync(self) -> Account:
        """Mark the account as synced now and return it."""
        self._account.last_sync = utcnow()
        logger.debug("Marked %s synced at %s", self.name, self._account.last_sync)
        return self._account
