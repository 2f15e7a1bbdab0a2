"""
Base class for incremental feed synchronisation.

Both feeds go through the same pass:
fetch -> skip already recorded ids -> normalize (and enrich) new entries
-> notify (or announce the first sync) -> append records.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from dateutil.tz import gettz

from blackboard_watcher.auth.blackboard_session import BlackboardSession
from blackboard_watcher.config import Settings, get_settings
from blackboard_watcher.db.record_store import RecordStore
from blackboard_watcher.errors import PersistenceError
from blackboard_watcher.models import (
    LEGACY_INIT_ID,
    RECORD_TYPES,
    FeedItem,
    FeedKind,
    NotificationPolicy,
    SyncResult,
)
from blackboard_watcher.notify.formatters import MessageFormatter
from blackboard_watcher.notify.telegram import TelegramNotifier

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y/%m/%d %H:%M:%S"


class FeedSync(ABC):
    """
    One sync pass over one feed for one identity.

    The very first pass for a feed records everything it sees and sends a
    single "initialized" message instead of per-item notifications.
    Later passes notify eligible new items. Every new item is recorded
    exactly once, whether or not it was notified.
    """

    feed_kind: FeedKind

    def __init__(
        self,
        identity_id: str,
        session: BlackboardSession,
        store: RecordStore,
        notifier: TelegramNotifier,
        policy: NotificationPolicy,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize a sync pass.

        Args:
            identity_id: Identity whose feed is synced
            session: Authenticated Blackboard session
            store: Record store
            notifier: Message sink
            policy: The identity's policy snapshot
            settings: Optional settings instance, will use default if not provided
        """
        self.identity_id = identity_id
        self.session = session
        self.store = store
        self.notifier = notifier
        self.policy = policy
        self.settings = settings or get_settings()
        self.timezone = gettz(self.settings.timezone)
        self.formatter = MessageFormatter()

    @abstractmethod
    def fetch_entries(self) -> List[Dict[str, Any]]:
        """Fetch the raw feed entries - implemented by subclasses."""
        pass

    @abstractmethod
    def entry_id(self, entry: Dict[str, Any]) -> str:
        """Remote id of a raw entry."""
        pass

    @abstractmethod
    def normalize(self, entry: Dict[str, Any], first_run: bool) -> FeedItem:
        """Turn a raw entry into a FeedItem, enriching it unless ``first_run``."""
        pass

    @abstractmethod
    def compose(self, item: FeedItem) -> str:
        """Message text for an eligible item."""
        pass

    @abstractmethod
    def init_message(self, synced_count: int) -> str:
        """Message announcing the first sync of this feed."""
        pass

    def run(self) -> SyncResult:
        """
        Execute one sync pass.

        Returns:
            SyncResult: Counts of new, notified and unsaved items

        Raises:
            FetchError: If the feed itself cannot be fetched
            PersistenceError: If existing records cannot be read
        """
        entries = self.fetch_entries()

        seen_ids = self.store.get_record_ids(self.identity_id, self.feed_kind)
        initialized = self.store.is_initialized(self.identity_id, self.feed_kind)
        # Records (including a legacy "%init%" one) only exist after a first run
        first_run = not (initialized or seen_ids)
        result = SyncResult(feed_kind=self.feed_kind, first_run=first_run)

        new_items: List[FeedItem] = []
        batch_ids = set()
        for entry in entries:
            remote_id = self.entry_id(entry)
            if not remote_id or remote_id == LEGACY_INIT_ID:
                continue
            if remote_id in seen_ids or remote_id in batch_ids:
                continue
            batch_ids.add(remote_id)
            new_items.append(self.normalize(entry, first_run))
        result.new_items = len(new_items)

        if first_run:
            self._deliver(self.init_message(len(new_items)), result)
        else:
            for item in new_items:
                if not item.should_notify:
                    logger.debug(f"Not notifying {item.remote_id}: {item.title} ({item.course})")
                    continue
                if self._deliver(self.compose(item), result):
                    result.notified += 1

        record_type = RECORD_TYPES[self.feed_kind]
        records = [record_type.from_item(self.identity_id, item) for item in new_items]
        saved = self.store.append_records(self.identity_id, self.feed_kind, records)
        result.persistence_failures = saved.count(False)

        if not initialized and LEGACY_INIT_ID not in seen_ids:
            self._mark_initialized(result)

        logger.info(
            f"{self.feed_kind.value.capitalize()} sync for {self.identity_id}: "
            f"{result.new_items} new, {result.notified} notified"
            + (" (first run)" if first_run else "")
            + (f", {result.persistence_failures} not saved" if result.persistence_failures else "")
        )
        return result

    def _mark_initialized(self, result: SyncResult) -> None:
        """Set the feed's initialized flag; a failure is counted, not raised."""
        try:
            self.store.mark_initialized(self.identity_id, self.feed_kind)
        except PersistenceError as e:
            logger.error(f"Could not mark {self.feed_kind.value} feed initialized for {self.identity_id}: {e}")
            result.persistence_failures += 1

    def _deliver(self, text: str, result: SyncResult) -> bool:
        """Send one message; failures are counted and logged, never raised."""
        try:
            if self.notifier.deliver(self.identity_id, text):
                return True
            logger.warning(f"Failed to deliver {self.feed_kind.value} message to {self.identity_id}")
        except Exception as e:
            logger.error(f"Error delivering {self.feed_kind.value} message to {self.identity_id}: {e}")
        result.delivery_failures += 1
        return False

    def format_epoch_ms(self, epoch_ms: Any) -> str:
        """Render an epoch-milliseconds timestamp in the display timezone."""
        try:
            return datetime.fromtimestamp(int(epoch_ms) / 1000, tz=self.timezone).strftime(TIME_FORMAT)
        except (ValueError, TypeError, OverflowError, OSError):
            logger.debug(f"Could not parse timestamp '{epoch_ms}'")
            return ""

    def format_iso(self, value: Optional[str]) -> str:
        """Render an ISO-8601 UTC time string in the display timezone."""
        if not value:
            return ""
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, TypeError):
            logger.debug(f"Could not parse date '{value}'")
            return value
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=gettz("UTC"))
        return parsed.astimezone(self.timezone).strftime(TIME_FORMAT)
