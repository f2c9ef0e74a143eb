"""
Per-account sync: remote calendars and events are reconciled into the store.
"""

from datetime import datetime

from switchcal.db import CalendarStore
from switchcal.models import Account
from switchcal.models import AuthenticationError
from switchcal.models import Calendar
from switchcal.models import CalendarSyncError
from switchcal.models import NotFoundError
from switchcal.models import StoreError
from switchcal.models import SyncConfig
from switchcal.models import SyncStats
from switchcal.models import utcnow
from switchcal.providers.base import Provider


def _merge_local_settings(store: CalendarStore, remote: Calendar) -> Calendar:
    """Keep the visibility and color chosen locally for a known calendar."""
    try:
        existing = store.get_calendar(remote.id)
    except NotFoundError:
        return remote
    if existing.account_id == remote.account_id:
        remote.visible = existing.visible
        remote.color = existing.color
    return remote


def _prune_missing(
    stats: SyncStats,
    logger,
    store: CalendarStore,
    calendar: Calendar,
    fetched_ids: set[str],
    window: tuple[datetime, datetime],
):
    """Delete stored events in the window that the provider no longer returns."""
    start, end = window
    stale = store.get_event_ids_in_range(calendar.id, start, end) - fetched_ids
    for event_id in sorted(stale):
        try:
            store.delete_event(event_id)
        except StoreError as e:
            logger.error(f"Failed to delete stale event {event_id}: {e}")
            stats.errors += 1
            continue
        logger.debug(f"Deleted event {event_id} missing from {calendar.name}")
        stats.deleted += 1


def sync_calendar(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    provider: Provider,
    store: CalendarStore,
    calendar: Calendar,
    window: tuple[datetime, datetime],
    now: datetime | None = None,
):
    """
    Fetch one calendar's events for the window and upsert them.

    Transport and decode failures skip this calendar only. Authentication
    failures propagate and abort the whole account.
    """
    start, end = window
    try:
        events = provider.get_events(calendar.id, start, end)
    except AuthenticationError:
        raise
    except CalendarSyncError as e:
        logger.error(f"Failed to fetch events for {calendar.name}: {e}")
        stats.errors += 1
        return

    known = store.get_event_ids_by_calendar(calendar.id)
    fetched_ids = set()
    for event in events:
        fetched_ids.add(event.id)
        event.calendar_id = calendar.id
        if event.start is None or event.end is None:
            logger.warning(f"Skipping event {event.id!r} in {calendar.name}: missing start or end")
            stats.errors += 1
            continue
        try:
            store.save_event(event)
        except StoreError as e:
            logger.error(f"Failed to save event {event.id!r}: {e}")
            stats.errors += 1
            continue

        if event.id in known:
            stats.modified += 1
        else:
            stats.added += 1
        if event.cancelled:
            stats.cancelled += 1

    logger.info(f"{calendar.name}: {len(events)} event(s) fetched")

    if config.prune_missing:
        _prune_missing(stats, logger, store, calendar, fetched_ids, window)

    calendar.last_sync = now or utcnow()
    try:
        store.save_calendar(calendar)
    except StoreError as e:
        logger.error(f"Failed to record sync time for {calendar.name}: {e}")
        stats.errors += 1


def run_account_sync(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    provider: Provider,
    store: CalendarStore,
    now: datetime | None = None,
) -> Account:
    """
    Authenticate, list calendars, sync each calendar, then stamp the account.

    Raises:
        AuthenticationError: credentials are unusable; nothing was synced
        TransportError: the calendar list could not be fetched
    """
    now = now or utcnow()
    window = config.window(now)

    provider.authenticate()
    remote_calendars = provider.list_calendars()
    logger.info(f"{provider.name}: {len(remote_calendars)} calendar(s)")

    for calendar in remote_calendars:
        calendar.account_id = provider.account.id
        calendar = _merge_local_settings(store, calendar)
        try:
            store.save_calendar(calendar)
        except StoreError as e:
            logger.error(f"Failed to save calendar {calendar.name}: {e}")
            stats.errors += 1
            continue
        stats.calendars += 1
        sync_calendar(config, stats, logger, provider, store, calendar, window, now)

    account = provider.sync()
    try:
        store.save_account(account)
    except StoreError as e:
        logger.error(f"Failed to record sync time for {account.name}: {e}")
        stats.errors += 1
    return account
