"""Authentication module for Blackboard Watcher."""

from blackboard_watcher.auth.blackboard_session import (
    AuthStage,
    BlackboardSession,
    SessionState,
)
from blackboard_watcher.auth.vault import CredentialVault

__all__ = ["AuthStage", "BlackboardSession", "CredentialVault", "SessionState"]
