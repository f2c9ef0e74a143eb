"""
Account creation flows and first-run bootstrap.
"""

import logging

from switchcal.db import CalendarStore
from switchcal.models import DEFAULT_CALENDAR_COLOR
from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import Calendar
from switchcal.models import CalendarSyncError
from switchcal.models import new_account_id
from switchcal.models import new_calendar_id
from switchcal.providers.caldav import CALDAV_SERVERS

logger = logging.getLogger(__name__)

LOCAL_ACCOUNT_NAME = "Local"
DEFAULT_CALENDAR_NAME = "My Calendar"


def ensure_default_calendar(store: CalendarStore) -> Calendar | None:
    """
    Create a local account holding "My Calendar" when no calendar exists yet.

    Returns:
        The new calendar, or None if calendars were already present
    """
    if store.get_all_calendars():
        return None

    account = Account(id=new_account_id(), name=LOCAL_ACCOUNT_NAME, type=AccountType.LOCAL)
    store.save_account(account)
    calendar = Calendar(
        id=new_calendar_id(),
        account_id=account.id,
        name=DEFAULT_CALENDAR_NAME,
        color=DEFAULT_CALENDAR_COLOR,
        visible=True,
    )
    store.save_calendar(calendar)
    logger.info(f"Created default calendar '{DEFAULT_CALENDAR_NAME}'")
    return calendar


def create_caldav_account(
    store: CalendarStore,
    account_type: AccountType,
    name: str,
    username: str,
    app_password: str,
    server_url: str | None = None,
    email: str | None = None,
) -> Account:
    """
    Store a basic-auth CalDAV account (iCloud, Outlook, Samsung or generic).

    The server URL defaults to the provider's well-known endpoint.
    """
    account_type = AccountType(account_type)
    if account_type in (AccountType.LOCAL, AccountType.GOOGLE):
        raise CalendarSyncError(f"{account_type.value} accounts are not CalDAV accounts")

    url = server_url or CALDAV_SERVERS.get(account_type, "")
    if not url:
        raise CalendarSyncError("a server URL is required for generic CalDAV accounts")
    if not (username and app_password):
        raise CalendarSyncError("username and app password are required")

    account = Account(
        id=new_account_id(),
        name=name,
        type=account_type,
        email=email or (username if "@" in username else ""),
        server_url=url,
        username=username,
        app_password=app_password,
    )
    store.save_account(account)
    logger.info(f"Added {account_type.value} account '{name}'")
    return account
