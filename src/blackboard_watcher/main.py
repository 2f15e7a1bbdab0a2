"""
Main orchestrator for Blackboard Watcher.

Coordinates a check for every bound identity:
1. Load the credential and notification policy
2. Decrypt the password and log in through IAAA
3. Sync the notice stream and the calendar feed
4. Report failures to the identity
"""

import argparse
import getpass
import logging
import sys
import time
from typing import Callable, List, Optional

from blackboard_watcher.auth import BlackboardSession, CredentialVault
from blackboard_watcher.config import Settings, get_settings, setup_logging
from blackboard_watcher.db import RecordStore
from blackboard_watcher.errors import WatcherError
from blackboard_watcher.models import Credential, FeedKind
from blackboard_watcher.notify import MessageFormatter, TelegramNotifier
from blackboard_watcher.sync import CalendarSync, FeedSync, NoticeSync

logger = logging.getLogger(__name__)


class BlackboardWatcher:
    """
    Main orchestrator for Blackboard monitoring.

    Identities are checked one after another, each with its own session.
    Errors are contained per feed and per identity.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[RecordStore] = None,
        notifier: Optional[TelegramNotifier] = None,
        vault: Optional[CredentialVault] = None,
        session_factory: Callable[..., BlackboardSession] = BlackboardSession,
    ):
        """
        Initialize the watcher with all components.

        Args:
            settings: Optional settings instance, will use default if not provided
            store: Record store, Supabase-backed by default
            notifier: Message sink, Telegram by default
            vault: Credential vault, keyed from settings by default
            session_factory: Builds one session per identity check
        """
        self.settings = settings or get_settings()
        self.store = store or RecordStore(settings=self.settings)
        self.notifier = notifier or TelegramNotifier(settings=self.settings)
        self.vault = vault or CredentialVault(self.settings.encryption_key)
        self.session_factory = session_factory
        self.formatter = MessageFormatter()

        # Track stats for the current sweep
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> dict:
        return {
            "identities_checked": 0,
            "new_items": 0,
            "notifications_sent": 0,
            "errors": 0,
        }

    def check_identity(self, identity_id: str) -> bool:
        """
        Check both feeds for one identity.

        Args:
            identity_id: Identity to check

        Returns:
            bool: True if every enabled feed synced without error

        Raises:
            PersistenceError: If the credential or policy cannot be read
        """
        credential = self.store.get_credential(identity_id)
        if credential is None:
            logger.warning(f"No credential bound for {identity_id}, skipping")
            return False

        policy = self.store.get_policy(identity_id)
        feeds: List[type] = []
        if policy.notify_notice:
            feeds.append(NoticeSync)
        if policy.notify_calendar:
            feeds.append(CalendarSync)
        if not feeds:
            logger.info(f"All feeds disabled for {identity_id}, skipping")
            return True

        self.stats["identities_checked"] += 1

        with self.session_factory(self.settings) as session:
            try:
                password = self.vault.decrypt(credential.secret)
                session.login(credential.username, password)
            except WatcherError as e:
                logger.error(f"Could not log in for {identity_id}: {e}")
                self._report(identity_id, e)
                return False

            success = True
            for sync_cls in feeds:
                sync: FeedSync = sync_cls(
                    identity_id,
                    session,
                    self.store,
                    self.notifier,
                    policy,
                    settings=self.settings,
                )
                try:
                    result = sync.run()
                except WatcherError as e:
                    logger.error(f"{sync.feed_kind.value.capitalize()} sync failed for {identity_id}: {e}")
                    self._report(identity_id, e, sync.feed_kind)
                    success = False
                    continue

                self.stats["new_items"] += result.new_items
                self.stats["notifications_sent"] += result.notified
                if result.delivery_failures or result.persistence_failures:
                    self.stats["errors"] += result.delivery_failures + result.persistence_failures

        return success

    def check_all_identities(self) -> bool:
        """
        Run one sweep over every bound identity.

        Returns:
            bool: True if every identity was checked without error
        """
        logger.info("=" * 50)
        logger.info("Starting Blackboard check")
        logger.info("=" * 50)

        self.stats = self._empty_stats()
        try:
            identities = self.store.list_identities()
        except WatcherError as e:
            logger.error(f"Could not list identities: {e}")
            return False

        success = True
        for i, identity_id in enumerate(identities):
            if i > 0:
                # Throttle between identities
                time.sleep(self.settings.inter_identity_delay_seconds)
            try:
                checked = self.check_identity(identity_id)
            except WatcherError as e:
                logger.error(f"Check failed for {identity_id}: {e}")
                self._report(identity_id, e)
                checked = False
            except Exception as e:
                logger.error(f"Unexpected error checking {identity_id}: {e}", exc_info=True)
                self._report(identity_id, e)
                checked = False
            if not checked:
                self.stats["errors"] += 1
                success = False

        self._log_summary(len(identities))
        return success

    def run_forever(self, max_sweeps: Optional[int] = None) -> None:
        """
        Sweep all identities every ``check_interval_minutes``.

        Args:
            max_sweeps: Stop after this many sweeps; run until interrupted if None
        """
        interval = self.settings.check_interval_minutes
        sweeps = 0
        while True:
            self.check_all_identities()
            sweeps += 1
            if max_sweeps is not None and sweeps >= max_sweeps:
                return
            logger.info(f"Next check in {interval} minutes")
            time.sleep(interval * 60)

    def bind_identity(self, identity_id: str, username: str, password: str) -> Credential:
        """
        Bind IAAA credentials to an identity.

        The credentials are checked with a real login first; nothing is
        stored if the login fails.

        Raises:
            AuthenticationError: If IAAA rejects the credentials
            TransportError: If the platform cannot be reached
            PersistenceError: If the credential cannot be saved
        """
        with self.session_factory(self.settings) as session:
            session.login(username, password)

        credential = Credential(
            identity_id=identity_id,
            username=username,
            secret=self.vault.encrypt(password),
        )
        self.store.save_credential(credential)
        logger.info(f"Bound IAAA account {username} to {identity_id}")
        return credential

    def _report(self, identity_id: str, error: Exception, feed_kind: Optional[FeedKind] = None) -> None:
        """Tell the identity what went wrong; delivery problems are only logged."""
        try:
            if not self.notifier.deliver(identity_id, self.formatter.format_error(error, feed_kind)):
                logger.warning(f"Failed to deliver error summary to {identity_id}")
        except Exception as e:
            logger.error(f"Error delivering error summary to {identity_id}: {e}")

    def _log_summary(self, identity_count: int) -> None:
        """Log sweep summary."""
        logger.info(
            f"Check complete: {self.stats['identities_checked']}/{identity_count} identities checked, "
            f"{self.stats['new_items']} new items, "
            f"{self.stats['notifications_sent']} notifications sent, "
            f"{self.stats['errors']} errors"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blackboard-watcher",
        description="Watch PKU Blackboard for new notices and upcoming deadlines.",
    )
    subparsers = parser.add_subparsers(dest="command")

    check = subparsers.add_parser("check", help="run a single check (default)")
    check.add_argument("--identity", help="only check this identity")

    subparsers.add_parser("watch", help="check every CHECK_INTERVAL_MINUTES until interrupted")

    bind = subparsers.add_parser("bind", help="bind IAAA credentials to an identity")
    bind.add_argument("identity", help="identity (Telegram chat id)")
    bind.add_argument("username", help="IAAA user name")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for Blackboard Watcher.

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    args = build_parser().parse_args(argv)

    try:
        # Validate configuration early
        settings = get_settings()
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("Please check your environment variables.", file=sys.stderr)
        return 1

    setup_logging(settings)
    logger.debug(f"Loaded configuration for {settings.blackboard_base_url}")

    watcher = BlackboardWatcher(settings=settings)

    if args.command == "watch":
        try:
            watcher.run_forever()
        except KeyboardInterrupt:
            logger.info("Stopped")
        return 0

    if args.command == "bind":
        password = getpass.getpass("IAAA password: ")
        try:
            watcher.bind_identity(args.identity, args.username, password)
        except WatcherError as e:
            logger.error(f"Binding failed: {e}")
            return 1
        return 0

    identity = getattr(args, "identity", None)
    if identity:
        try:
            success = watcher.check_identity(identity)
        except WatcherError as e:
            logger.error(f"Check failed for {identity}: {e}")
            success = False
    else:
        success = watcher.check_all_identities()

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
