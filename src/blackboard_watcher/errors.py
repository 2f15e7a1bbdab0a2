"""Error hierarchy for Blackboard Watcher.

Every failure that crosses a component boundary is one of these types, so
callers can decide whether it is fatal to a whole check, to one feed, or
only to a single item or record.
"""

from typing import Optional


class WatcherError(Exception):
    """Base exception for all watcher errors."""

    pass


class AuthenticationError(WatcherError):
    """Credentials were rejected by the identity provider.

    Fatal to the current check. The message is shown to the user as-is.
    """

    pass


class DecryptionError(WatcherError):
    """A stored secret could not be decrypted with the configured key.

    The identity is unusable until its credentials are bound again.
    """

    pass


class TransportError(WatcherError):
    """Network or HTTP failure while talking to the remote platform."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class FetchError(TransportError):
    """A feed or detail page could not be retrieved.

    Fatal to a sync pass when raised for a feed; only degrades enrichment
    when raised for a detail page.
    """

    pass


class PersistenceError(WatcherError):
    """A read or write against the record store failed."""

    pass
