"""
Tests for first-run bootstrap and CalDAV account creation.
"""

import pytest

from switchcal.accounts import create_caldav_account
from switchcal.accounts import ensure_default_calendar
from switchcal.models import AccountType
from switchcal.models import CalendarSyncError


class TestDefaultCalendar:
    def test_created_on_empty_store(self, store):
        calendar = ensure_default_calendar(store)

        assert calendar.name == "My Calendar"
        assert calendar.color == "#4285f4"
        assert calendar.visible is True
        account = store.get_account(calendar.account_id)
        assert account.type == AccountType.LOCAL
        assert account.name == "Local"

    def test_created_only_once(self, store):
        ensure_default_calendar(store)

        assert ensure_default_calendar(store) is None
        assert len(store.get_all_calendars()) == 1
        assert len(store.get_all_accounts()) == 1

    def test_not_created_when_calendars_exist(self, seeded_store):
        assert ensure_default_calendar(seeded_store) is None
        assert [c.id for c in seeded_store.get_all_calendars()] == ["cal-1"]


class TestCreateCalDAVAccount:
    def test_well_known_server_url(self, store):
        account = create_caldav_account(store, AccountType.APPLE, "iCloud", "alice@icloud.com", "app-pw")

        saved = store.get_account(account.id)
        assert saved.server_url == "https://caldav.icloud.com/"
        assert saved.email == "alice@icloud.com"
        assert saved.app_password == "app-pw"
        assert saved.enabled is True

    def test_explicit_server_url_wins(self, store):
        account = create_caldav_account(
            store,
            "caldav",
            "Work",
            "alice",
            "pw",
            server_url="https://dav.example.com/",
        )
        assert account.type == AccountType.CALDAV
        assert account.server_url == "https://dav.example.com/"
        assert account.email == ""

    def test_generic_caldav_requires_url(self, store):
        with pytest.raises(CalendarSyncError):
            create_caldav_account(store, AccountType.CALDAV, "Work", "alice", "pw")
        assert store.get_all_accounts() == []

    @pytest.mark.parametrize("username, password", [("", "pw"), ("alice", "")])
    def test_credentials_required(self, store, username, password):
        with pytest.raises(CalendarSyncError):
            create_caldav_account(store, AccountType.OUTLOOK, "Outlook", username, password)

    @pytest.mark.parametrize("account_type", [AccountType.LOCAL, AccountType.GOOGLE])
    def test_rejects_non_caldav_types(self, store, account_type):
        with pytest.raises(CalendarSyncError):
            create_caldav_account(store, account_type, "x", "alice", "pw")
