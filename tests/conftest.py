"""Shared fixtures and in-memory collaborators for Blackboard Watcher tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from blackboard_watcher.auth.vault import CredentialVault
from blackboard_watcher.config import Settings
from blackboard_watcher.errors import FetchError, WatcherError
from blackboard_watcher.models import (
    Credential,
    FeedKind,
    NotificationPolicy,
    Record,
)

TEST_ENCRYPTION_KEY = "unit-test-key"


@pytest.fixture
def settings() -> Settings:
    """Settings that never read the environment file."""
    return Settings(
        _env_file=None,
        encryption_key=TEST_ENCRYPTION_KEY,
        supabase_url="https://example.supabase.co",
        supabase_service_role_key="service-role-key",
        telegram_bot_token="123456:test-token",
        timezone="Asia/Shanghai",
    )


@pytest.fixture
def vault() -> CredentialVault:
    """Vault keyed like the test settings."""
    return CredentialVault(TEST_ENCRYPTION_KEY)


class InMemoryStore:
    """Record store double keeping everything in dictionaries."""

    def __init__(self) -> None:
        self.credentials: Dict[str, Credential] = {}
        self.policies: Dict[str, NotificationPolicy] = {}
        self.initialized: Set[Tuple[str, FeedKind]] = set()
        self.records: Dict[Tuple[str, FeedKind], List[Record]] = {}
        self.legacy_ids: Dict[Tuple[str, FeedKind], Set[str]] = {}
        self.failing_ids: Set[str] = set()
        self.list_error: Optional[WatcherError] = None

    def list_identities(self) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.credentials)

    def get_credential(self, identity_id: str) -> Optional[Credential]:
        return self.credentials.get(identity_id)

    def save_credential(self, credential: Credential) -> None:
        self.credentials[credential.identity_id] = credential

    def get_policy(self, identity_id: str) -> NotificationPolicy:
        return self.policies.get(identity_id, NotificationPolicy())

    def is_initialized(self, identity_id: str, feed_kind: FeedKind) -> bool:
        return (identity_id, feed_kind) in self.initialized

    def mark_initialized(self, identity_id: str, feed_kind: FeedKind) -> None:
        self.initialized.add((identity_id, feed_kind))

    def get_records(self, identity_id: str, feed_kind: FeedKind) -> List[Record]:
        return list(self.records.get((identity_id, feed_kind), []))

    def get_record_ids(self, identity_id: str, feed_kind: FeedKind) -> Set[str]:
        ids = {record.remote_id for record in self.get_records(identity_id, feed_kind)}
        return ids | self.legacy_ids.get((identity_id, feed_kind), set())

    def append_records(
        self,
        identity_id: str,
        feed_kind: FeedKind,
        records: Sequence[Record],
    ) -> List[bool]:
        results = []
        for record in records:
            if record.remote_id in self.failing_ids:
                results.append(False)
                continue
            self.records.setdefault((identity_id, feed_kind), []).append(record)
            results.append(True)
        return results


class RecordingNotifier:
    """Message sink double that remembers every delivery."""

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.messages: List[Tuple[str, str]] = []

    def deliver(self, identity_id: str, text: str) -> bool:
        self.messages.append((identity_id, text))
        return self.succeed

    def texts(self, identity_id: Optional[str] = None) -> List[str]:
        return [text for ident, text in self.messages if identity_id in (None, ident)]


class FakeSession:
    """Blackboard session double serving canned feeds and detail pages."""

    def __init__(
        self,
        notice_feed: Optional[Dict[str, Any]] = None,
        calendar_feed: Optional[List[Dict[str, Any]]] = None,
        detail_pages: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.notice_feed = notice_feed if notice_feed is not None else {"sv_streamEntries": []}
        self.calendar_feed = calendar_feed if calendar_feed is not None else []
        self.detail_pages = detail_pages or {}
        self.login_error: Optional[WatcherError] = None
        self.notice_error: Optional[WatcherError] = None
        self.calendar_error: Optional[WatcherError] = None
        self.logins: List[Tuple[str, str]] = []
        self.detail_requests: List[str] = []
        self.lookaheads: List[float] = []
        self.closed = False

    def __enter__(self) -> FakeSession:
        return self

    def __exit__(self, *_: object) -> None:
        self.closed = True

    def login(self, username: str, password: str) -> None:
        self.logins.append((username, password))
        if self.login_error is not None:
            raise self.login_error

    def fetch_notice_feed(self) -> Dict[str, Any]:
        if self.notice_error is not None:
            raise self.notice_error
        return self.notice_feed

    def fetch_calendar_feed(self, lookahead_hours: float) -> List[Dict[str, Any]]:
        self.lookaheads.append(lookahead_hours)
        if self.calendar_error is not None:
            raise self.calendar_error
        return self.calendar_feed

    def fetch_detail_page(self, reference: Any) -> str:
        ref = str(reference)
        self.detail_requests.append(ref)
        page = self.detail_pages.get(ref)
        if page is None:
            raise FetchError("Fetching detail page failed: HTTP 404", status_code=404)
        if isinstance(page, Exception):
            raise page
        return page


def context_html(title: str) -> str:
    """Stream entry title markup as Blackboard renders it."""
    return (
        '<span class="inlineContextMenu"><a href="#">打开</a></span>'
        f'<a href="/webapps/blackboard/execute/launcher">{title}</a>'
        '<span class="announcementType">课程通知</span>'
        " |"
    )


def upload_page(title: str, instruction: str = "", attachments: Sequence[str] = ()) -> str:
    """Assignment upload page with a title, instructions and provided files."""
    links = "".join(f'<a href="/bbcswebdav/{i}">{label}</a>' for i, label in enumerate(attachments))
    return (
        f"<html><head><title>{title}</title></head><body>"
        f'<div class="vtbegenerated"><p>{instruction}</p></div>'
        f'<ul><li id="instructions">{links}</li></ul>'
        "</body></html>"
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
