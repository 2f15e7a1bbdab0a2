"""
Record store for credentials, policies and processed feed items.

Backs the sync engine with Supabase tables. Feed records are append-only:
the store inserts them once and never updates or deletes them.
"""

import logging
from typing import List, Optional, Sequence, Set

from pydantic import ValidationError
from supabase import Client

from blackboard_watcher.config import Settings
from blackboard_watcher.db.client import create_supabase_client, get_supabase_client
from blackboard_watcher.errors import PersistenceError
from blackboard_watcher.models import (
    RECORD_TYPES,
    Credential,
    FeedKind,
    NotificationPolicy,
    Record,
)

logger = logging.getLogger(__name__)

# Table names in Supabase
CREDENTIALS_TABLE = "iaaa_credentials"
CONFIG_TABLE = "watcher_config"
RECORD_TABLES = {
    FeedKind.NOTICE: "notice_records",
    FeedKind.CALENDAR: "assignment_records",
}
RECORD_ID_COLUMNS = {
    FeedKind.NOTICE: "notice_id",
    FeedKind.CALENDAR: "assignment_id",
}
INITIALIZED_COLUMNS = {
    FeedKind.NOTICE: "notice_initialized",
    FeedKind.CALENDAR: "calendar_initialized",
}


class RecordStore:
    """
    Supabase-backed persistence for one watcher deployment.

    Every identity owns one credential row, at most one ``watcher_config``
    row (policy plus per-feed ``initialized`` flags) and any number of
    notice / assignment records.
    """

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        """
        Initialize the record store.

        Args:
            client: Optional Supabase client, will use default if not provided
            settings: Settings to build a dedicated client from when no client is given
        """
        if client is None:
            client = create_supabase_client(settings) if settings else get_supabase_client()
        self.client = client

    def list_identities(self) -> List[str]:
        """Ids of all identities with bound credentials."""
        try:
            result = self.client.table(CREDENTIALS_TABLE).select("identity_id").execute()
        except Exception as e:
            logger.error(f"Error listing identities: {e}")
            raise PersistenceError(f"Could not list identities: {e}") from e
        return [row["identity_id"] for row in result.data or []]

    def get_credential(self, identity_id: str) -> Optional[Credential]:
        """
        Get the credential bound to an identity.

        Returns:
            Credential or None if the identity never bound one
        """
        try:
            result = (
                self.client.table(CREDENTIALS_TABLE)
                .select("identity_id, username, secret")
                .eq("identity_id", identity_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error loading credential for {identity_id}: {e}")
            raise PersistenceError(f"Could not load credential: {e}") from e

        if not result.data:
            return None
        return Credential.model_validate(result.data[0])

    def save_credential(self, credential: Credential) -> None:
        """Create or replace the credential bound to an identity."""
        try:
            self.client.table(CREDENTIALS_TABLE).upsert(
                credential.model_dump(),
                on_conflict="identity_id",
            ).execute()
        except Exception as e:
            logger.error(f"Error saving credential for {credential.identity_id}: {e}")
            raise PersistenceError(f"Could not save credential: {e}") from e

    def get_policy(self, identity_id: str) -> NotificationPolicy:
        """
        Get an identity's notification policy.

        Identities without a ``watcher_config`` row get the default policy.
        """
        row = self._config_row(identity_id)
        if row is None:
            return NotificationPolicy()
        try:
            return NotificationPolicy.model_validate(row)
        except ValidationError as e:
            logger.error(f"Invalid notification policy for {identity_id}: {e}")
            raise PersistenceError(f"Invalid notification policy: {e}") from e

    def is_initialized(self, identity_id: str, feed_kind: FeedKind) -> bool:
        """Whether the first sync of ``feed_kind`` has completed for an identity."""
        row = self._config_row(identity_id)
        return bool(row and row.get(INITIALIZED_COLUMNS[feed_kind]))

    def mark_initialized(self, identity_id: str, feed_kind: FeedKind) -> None:
        """Record that the first sync of ``feed_kind`` has completed."""
        try:
            self.client.table(CONFIG_TABLE).upsert(
                {"identity_id": identity_id, INITIALIZED_COLUMNS[feed_kind]: True},
                on_conflict="identity_id",
            ).execute()
        except Exception as e:
            logger.error(f"Error marking {feed_kind.value} initialized for {identity_id}: {e}")
            raise PersistenceError(f"Could not mark feed initialized: {e}") from e

    def get_records(self, identity_id: str, feed_kind: FeedKind) -> List[Record]:
        """All records of ``feed_kind`` for an identity, oldest first."""
        try:
            result = (
                self.client.table(RECORD_TABLES[feed_kind])
                .select("*")
                .eq("identity_id", identity_id)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error loading {feed_kind.value} records for {identity_id}: {e}")
            raise PersistenceError(f"Could not load records: {e}") from e

        record_type = RECORD_TYPES[feed_kind]
        return [record_type.model_validate(row) for row in result.data or []]

    def get_record_ids(self, identity_id: str, feed_kind: FeedKind) -> Set[str]:
        """Remote ids of every record of ``feed_kind`` for an identity."""
        column = RECORD_ID_COLUMNS[feed_kind]
        try:
            result = (
                self.client.table(RECORD_TABLES[feed_kind])
                .select(column)
                .eq("identity_id", identity_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error loading {feed_kind.value} record ids for {identity_id}: {e}")
            raise PersistenceError(f"Could not load records: {e}") from e

        return {row[column] for row in result.data or []}

    def append_records(
        self,
        identity_id: str,
        feed_kind: FeedKind,
        records: Sequence[Record],
    ) -> List[bool]:
        """
        Insert new records one by one.

        A failing insert is logged and does not stop the remaining ones.

        Args:
            identity_id: Owner of the records
            feed_kind: Which feed the records belong to
            records: Records to append

        Returns:
            list: One success flag per record, in input order
        """
        results: List[bool] = []
        for record in records:
            try:
                self._insert(RECORD_TABLES[feed_kind], record)
                results.append(True)
            except PersistenceError as e:
                logger.error(f"Error saving {feed_kind.value} record {record.remote_id}: {e}")
                results.append(False)
        return results

    def _insert(self, table: str, record: Record) -> None:
        try:
            self.client.table(table).insert(record.model_dump(mode="json")).execute()
        except Exception as e:
            raise PersistenceError(str(e)) from e

    def _config_row(self, identity_id: str) -> Optional[dict]:
        try:
            result = (
                self.client.table(CONFIG_TABLE)
                .select("*")
                .eq("identity_id", identity_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error loading watcher config for {identity_id}: {e}")
            raise PersistenceError(f"Could not load watcher config: {e}") from e
        return result.data[0] if result.data else None


# SQL for creating the Supabase tables (run this in Supabase SQL Editor)
CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS iaaa_credentials (
    id BIGSERIAL PRIMARY KEY,
    identity_id TEXT NOT NULL UNIQUE,
    username TEXT NOT NULL,
    secret TEXT NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS watcher_config (
    id BIGSERIAL PRIMARY KEY,
    identity_id TEXT NOT NULL UNIQUE,
    notify_notice BOOLEAN NOT NULL DEFAULT TRUE,
    notify_calendar BOOLEAN NOT NULL DEFAULT TRUE,
    allowed_events JSONB NOT NULL DEFAULT '["assignment", "content", "announcement"]',
    course_events JSONB NOT NULL DEFAULT '{}',
    course_aliases JSONB NOT NULL DEFAULT '{}',
    notice_prefix TEXT NOT NULL DEFAULT '[教学网]',
    calendar_prefix TEXT NOT NULL DEFAULT '[DDL!]',
    calendar_lookahead_hours INTEGER NOT NULL DEFAULT 24,
    notice_initialized BOOLEAN NOT NULL DEFAULT FALSE,
    calendar_initialized BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE TABLE IF NOT EXISTS notice_records (
    id BIGSERIAL PRIMARY KEY,
    identity_id TEXT NOT NULL,
    notice_id TEXT NOT NULL,
    time TEXT NOT NULL,
    course TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    event TEXT NOT NULL,
    should_notify BOOLEAN NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    CONSTRAINT notice_records_identity_notice_unique UNIQUE (identity_id, notice_id)
);

CREATE TABLE IF NOT EXISTS assignment_records (
    id BIGSERIAL PRIMARY KEY,
    identity_id TEXT NOT NULL,
    assignment_id TEXT NOT NULL,
    time TEXT NOT NULL,
    course TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    should_notify BOOLEAN NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    CONSTRAINT assignment_records_identity_assignment_unique UNIQUE (identity_id, assignment_id)
);

CREATE INDEX IF NOT EXISTS idx_notice_records_identity
    ON notice_records(identity_id);

CREATE INDEX IF NOT EXISTS idx_assignment_records_identity
    ON assignment_records(identity_id);
"""
