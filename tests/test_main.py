"""Tests for the watcher orchestrator and console entry point."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import pytest

from blackboard_watcher import main as main_module
from blackboard_watcher.auth.vault import CredentialVault
from blackboard_watcher.config import Settings
from blackboard_watcher.errors import AuthenticationError, FetchError, PersistenceError
from blackboard_watcher.main import BlackboardWatcher
from blackboard_watcher.models import Credential, FeedKind, NotificationPolicy
from conftest import FakeSession, InMemoryStore, RecordingNotifier


class SessionFactory:
    """Hands out one FakeSession per identity check."""

    def __init__(self, configure: Optional[Callable[[FakeSession, int], None]] = None) -> None:
        self.configure = configure
        self.sessions: List[FakeSession] = []

    def __call__(self, settings: Settings) -> FakeSession:
        session = FakeSession()
        if self.configure is not None:
            self.configure(session, len(self.sessions))
        self.sessions.append(session)
        return session


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    delays: List[float] = []
    monkeypatch.setattr("blackboard_watcher.main.time.sleep", lambda seconds: delays.append(seconds))
    return delays


def _bind(store: InMemoryStore, vault: CredentialVault, identity_id: str, password: str = "pw") -> None:
    store.save_credential(
        Credential(identity_id=identity_id, username=f"stu{identity_id}", secret=vault.encrypt(password))
    )


def _watcher(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
    factory: SessionFactory,
) -> BlackboardWatcher:
    return BlackboardWatcher(
        settings=settings,
        store=store,
        notifier=notifier,
        vault=vault,
        session_factory=factory,
    )


def test_check_identity_logs_in_and_runs_both_feeds(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    """The decrypted password is used and the session is closed afterwards."""
    _bind(store, vault, "10001", password="秘密")
    factory = SessionFactory()

    assert _watcher(settings, store, notifier, vault, factory).check_identity("10001") is True

    session = factory.sessions[0]
    assert session.logins == [("stu10001", "秘密")]
    assert session.closed
    assert store.is_initialized("10001", FeedKind.NOTICE)
    assert store.is_initialized("10001", FeedKind.CALENDAR)
    assert len(notifier.texts("10001")) == 2


def test_rejected_login_reports_reason(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    _bind(store, vault, "10001")

    def reject(session: FakeSession, _: int) -> None:
        session.login_error = AuthenticationError("用户名或密码错误")

    factory = SessionFactory(reject)

    assert _watcher(settings, store, notifier, vault, factory).check_identity("10001") is False
    assert notifier.texts("10001") == ["IAAA 登录失败：用户名或密码错误"]
    assert not store.is_initialized("10001", FeedKind.NOTICE)
    assert factory.sessions[0].closed


def test_undecryptable_secret_asks_to_rebind(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    """A secret written under another key never reaches the login."""
    store.save_credential(
        Credential(identity_id="10001", username="stu", secret=CredentialVault("old-key").encrypt("pw"))
    )
    factory = SessionFactory()

    assert _watcher(settings, store, notifier, vault, factory).check_identity("10001") is False
    assert factory.sessions[0].logins == []
    assert "重新绑定" in notifier.texts("10001")[0]


def test_failing_feed_does_not_stop_other_feed(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    _bind(store, vault, "10001")

    def break_notices(session: FakeSession, _: int) -> None:
        session.notice_error = FetchError("Loading notice stream failed: HTTP 503", status_code=503)

    watcher = _watcher(settings, store, notifier, vault, SessionFactory(break_notices))

    assert watcher.check_identity("10001") is False
    texts = notifier.texts("10001")
    assert len(texts) == 2
    assert texts[0].startswith("处理通知时发生错误：网络请求失败")
    assert "日程" in texts[1]
    assert store.is_initialized("10001", FeedKind.CALENDAR)
    assert not store.is_initialized("10001", FeedKind.NOTICE)


def test_disabled_feeds_are_skipped(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    _bind(store, vault, "10001")
    _bind(store, vault, "10002")
    store.policies["10001"] = NotificationPolicy(notify_notice=False, notify_calendar=False)
    store.policies["10002"] = NotificationPolicy(notify_notice=False)
    factory = SessionFactory()
    watcher = _watcher(settings, store, notifier, vault, factory)

    assert watcher.check_identity("10001") is True
    assert factory.sessions == []

    assert watcher.check_identity("10002") is True
    assert factory.sessions[0].lookaheads == [24]
    assert not store.is_initialized("10002", FeedKind.NOTICE)


def test_identity_without_credential_is_skipped(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    factory = SessionFactory()
    assert _watcher(settings, store, notifier, vault, factory).check_identity("ghost") is False
    assert factory.sessions == []
    assert notifier.messages == []


def test_sweep_throttles_and_isolates_identities(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
    sleeps: List[float],
) -> None:
    """One identity's failure is reported to it alone and the sweep continues."""
    for identity in ("10001", "10002", "10003"):
        _bind(store, vault, identity)

    def reject_second(session: FakeSession, index: int) -> None:
        if index == 1:
            session.login_error = AuthenticationError("账号已锁定")

    factory = SessionFactory(reject_second)
    watcher = _watcher(settings, store, notifier, vault, factory)

    assert watcher.check_all_identities() is False

    assert sleeps == [1.0, 1.0]
    assert len(factory.sessions) == 3
    assert notifier.texts("10002") == ["IAAA 登录失败：账号已锁定"]
    assert store.is_initialized("10003", FeedKind.NOTICE)
    assert watcher.stats["errors"] == 1
    assert watcher.stats["identities_checked"] == 3


def test_sweep_reports_store_errors_per_identity(
    settings: Settings,
    notifier: RecordingNotifier,
    vault: CredentialVault,
    sleeps: List[float],
) -> None:
    class FlakyStore(InMemoryStore):
        def get_policy(self, identity_id: str) -> NotificationPolicy:
            if identity_id == "10001":
                raise PersistenceError("Could not load watcher config: timeout")
            return super().get_policy(identity_id)

    store = FlakyStore()
    _bind(store, vault, "10001")
    _bind(store, vault, "10002")

    watcher = _watcher(settings, store, notifier, vault, SessionFactory())

    assert watcher.check_all_identities() is False
    assert notifier.texts("10001")[0].startswith("查询教学网时发生错误：数据库读写失败")
    assert store.is_initialized("10002", FeedKind.CALENDAR)


def test_sweep_fails_cleanly_when_identities_unavailable(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    store.list_error = PersistenceError("Could not list identities: timeout")
    assert _watcher(settings, store, notifier, vault, SessionFactory()).check_all_identities() is False
    assert notifier.messages == []


def test_run_forever_sleeps_check_interval_between_sweeps(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
    sleeps: List[float],
) -> None:
    watcher = _watcher(settings, store, notifier, vault, SessionFactory())
    watcher.run_forever(max_sweeps=3)
    assert sleeps == [3600, 3600]


def test_bind_identity_verifies_then_stores_encrypted_secret(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    factory = SessionFactory()
    watcher = _watcher(settings, store, notifier, vault, factory)

    credential = watcher.bind_identity("10001", "2100010000", "密码123")

    assert factory.sessions[0].logins == [("2100010000", "密码123")]
    assert store.get_credential("10001") == credential
    assert credential.secret != "密码123"
    assert vault.decrypt(credential.secret) == "密码123"


def test_bind_identity_stores_nothing_on_failed_login(
    settings: Settings,
    store: InMemoryStore,
    notifier: RecordingNotifier,
    vault: CredentialVault,
) -> None:
    def reject(session: FakeSession, _: int) -> None:
        session.login_error = AuthenticationError("用户名或密码错误")

    watcher = _watcher(settings, store, notifier, vault, SessionFactory(reject))

    with pytest.raises(AuthenticationError):
        watcher.bind_identity("10001", "2100010000", "wrong")
    assert store.get_credential("10001") is None


class StubWatcher:
    """Stands in for BlackboardWatcher in entry point tests."""

    calls: List[tuple] = []
    outcome = True

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def check_all_identities(self) -> bool:
        StubWatcher.calls.append(("all",))
        return StubWatcher.outcome

    def check_identity(self, identity_id: str) -> bool:
        StubWatcher.calls.append(("one", identity_id))
        return StubWatcher.outcome

    def run_forever(self) -> None:
        StubWatcher.calls.append(("forever",))


@pytest.fixture
def stub_watcher(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> Dict[str, object]:
    StubWatcher.calls = []
    StubWatcher.outcome = True
    monkeypatch.setattr(main_module, "get_settings", lambda: settings)
    monkeypatch.setattr(main_module, "setup_logging", lambda settings: None)
    monkeypatch.setattr(main_module, "BlackboardWatcher", StubWatcher)
    return {"calls": StubWatcher.calls}


def test_main_runs_single_sweep_by_default(stub_watcher: Dict[str, object]) -> None:
    assert main_module.main([]) == 0
    assert StubWatcher.calls == [("all",)]


def test_main_checks_one_identity(stub_watcher: Dict[str, object]) -> None:
    StubWatcher.outcome = False
    assert main_module.main(["check", "--identity", "10001"]) == 1
    assert StubWatcher.calls == [("one", "10001")]


def test_main_watch_loops(stub_watcher: Dict[str, object]) -> None:
    assert main_module.main(["watch"]) == 0
    assert StubWatcher.calls == [("forever",)]


def test_main_reports_configuration_error(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    def broken() -> Settings:
        raise ValueError("encryption_key field required")

    monkeypatch.setattr(main_module, "get_settings", broken)

    assert main_module.main([]) == 1
    assert "Configuration error" in capsys.readouterr().err
