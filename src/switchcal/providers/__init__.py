"""
Provider selection by account type.
"""

from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.providers.base import Provider
from switchcal.providers.caldav import CALDAV_SERVERS
from switchcal.providers.caldav import CalDAVProvider
from switchcal.providers.google import GoogleProvider
from switchcal.providers.local import LocalProvider

_PROVIDERS: dict[AccountType, type[Provider]] = {
    AccountType.LOCAL: LocalProvider,
    AccountType.GOOGLE: GoogleProvider,
    AccountType.APPLE: CalDAVProvider,
    AccountType.OUTLOOK: CalDAVProvider,
    AccountType.SAMSUNG: CalDAVProvider,
    AccountType.CALDAV: CalDAVProvider,
}


def create_provider(
    account: Account,
    token_manager=None,
    google_backend: str = "rest",
    session=None,
    dav_client_factory=None,
) -> Provider:
    """
    Build the provider variant for an account.

    Google accounts use the REST API unless google_backend is "caldav".
    """
    cls = _PROVIDERS.get(account.type, CalDAVProvider)
    if account.type == AccountType.GOOGLE and google_backend == "caldav":
        cls = CalDAVProvider

    if cls is GoogleProvider:
        return GoogleProvider(account, token_manager, session=session)
    if cls is CalDAVProvider:
        return CalDAVProvider(account, token_manager, client_factory=dav_client_factory)
    return cls(account, token_manager)


__all__ = [
    "CALDAV_SERVERS",
    "CalDAVProvider",
    "GoogleProvider",
    "LocalProvider",
    "Provider",
    "create_provider",
]
