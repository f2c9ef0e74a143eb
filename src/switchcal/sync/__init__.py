"""
CalendarSynchronizer: runs the per-account sync for every enabled account.
"""

import logging
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import as_completed

from switchcal.db import CalendarStore
from switchcal.models import Account
from switchcal.models import CalendarSyncError
from switchcal.models import SyncConfig
from switchcal.models import SyncStats
from switchcal.providers import create_provider
from switchcal.sync.account import run_account_sync


class CalendarSynchronizer:
    """
    Main synchronization engine.

    Each account syncs independently on its own worker thread; the store is
    the only state they share.
    """

    def __init__(
        self,
        store: CalendarStore,
        config: SyncConfig,
        token_manager=None,
        provider_factory=create_provider,
    ):
        self.store = store
        self.config = config
        self.token_manager = token_manager
        self.provider_factory = provider_factory
        self.logger = logging.getLogger(__name__)
        self._background: ThreadPoolExecutor | None = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    @staticmethod
    def should_sync(account: Account) -> bool:
        return account.enabled and account.has_credentials

    def sync_account(self, account: Account) -> SyncStats:
        """Sync one account. Failures are reported in the returned stats."""
        stats = SyncStats()
        if not self.should_sync(account):
            stats.error = "account is disabled or has no credentials"
            self.logger.info(f"Skipping {account.name}: {stats.error}")
            return stats

        provider = self.provider_factory(
            account,
            self.token_manager,
            google_backend=self.config.google_backend,
        )
        self.logger.info(f"Syncing {account.name} ({account.type.value})")
        try:
            run_account_sync(self.config, stats, self.logger, provider, self.store)
        except CalendarSyncError as e:
            stats.error = str(e)
            self.logger.error(f"Sync of {account.name} aborted: {e}")
            return stats

        self.logger.info(
            f"{account.name}: {stats.added} added, {stats.modified} updated, "
            f"{stats.deleted} deleted, {stats.errors} error(s)"
        )
        return stats

    def sync_all(self) -> dict[str, SyncStats]:
        """Sync every eligible account concurrently and wait for all of them."""
        accounts = [a for a in self.store.get_all_accounts() if self.should_sync(a)]
        if not accounts:
            self.logger.info("No accounts to sync")
            return {}

        results: dict[str, SyncStats] = {}
        workers = max(1, min(self.config.max_workers, len(accounts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
            pending = {pool.submit(self.sync_account, a): a for a in accounts}
            for future in as_completed(pending):
                account = pending[future]
                try:
                    results[account.id] = future.result()
                except Exception as e:
                    self.logger.exception(f"Unexpected failure syncing {account.name}")
                    results[account.id] = SyncStats(error=str(e))
        return results

    def sync_account_in_background(self, account: Account) -> Future:
        """Start syncing an account without waiting for it (used right after it is added)."""
        if self._background is None:
            self._background = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="sync-bg",
            )
        return self._background.submit(self.sync_account, account)

    def shutdown(self, wait: bool = True) -> None:
        if self._background is not None:
            self._background.shutdown(wait=wait)
            self._background = None
