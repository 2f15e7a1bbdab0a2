"""
Blackboard session management and authentication.

Handles the two-stage login to course.pku.edu.cn: credentials are posted
to the IAAA identity provider, and the token it returns is exchanged at
the Blackboard SSO endpoint for a platform session.

IAAA, the SSO redirect and the data endpoints hand out cookies on
different domains and paths, so cookies are not left to the transport's
jar. They live in an explicit ``SessionState`` that is updated from every
response and sent along with every request.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from http.cookiejar import DefaultCookiePolicy
from typing import Any, Dict, List, Optional, Type, Union
from urllib.parse import urlparse

import requests
from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field
from requests.cookies import RequestsCookieJar

from blackboard_watcher.config import Settings, get_settings
from blackboard_watcher.errors import AuthenticationError, FetchError, TransportError

logger = logging.getLogger(__name__)

# The calendar query always starts a little in the past
CALENDAR_LOOKBEHIND = timedelta(hours=3)

# Truncate response bodies attached to errors and logs
MAX_LOGGED_BODY = 500


class AuthStage(str, Enum):
    """Progress through the login handshake."""
    UNAUTHENTICATED = "unauthenticated"
    IDENTITY_VERIFIED = "identity_verified"
    PLATFORM_AUTHENTICATED = "platform_authenticated"


class SessionState(BaseModel):
    """
    Immutable snapshot of a session's handshake stage and cookies.

    Attributes:
        stage: How far the login handshake has progressed
        cookies: Cookie values keyed by domain, then by cookie name
    """
    model_config = ConfigDict(frozen=True)

    stage: AuthStage = AuthStage.UNAUTHENTICATED
    cookies: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    def advance(self, stage: AuthStage) -> "SessionState":
        """Return a copy moved to ``stage``."""
        return self.model_copy(update={"stage": stage})

    def with_response_cookies(self, response: requests.Response) -> "SessionState":
        """
        Return a copy that also holds the cookies set by ``response``.

        Cookies set on intermediate redirects are included.
        """
        cookies = {domain: dict(values) for domain, values in self.cookies.items()}
        for resp in [*response.history, response]:
            host = urlparse(resp.url).hostname or ""
            for cookie in resp.cookies:
                domain = (cookie.domain or host).lstrip(".")
                cookies.setdefault(domain, {})[cookie.name] = cookie.value
        return self.model_copy(update={"cookies": cookies})

    def cookie_jar(self) -> RequestsCookieJar:
        """
        Build a jar holding every cookie, each scoped to its own domain.

        The jar picks the matching cookies again on every redirect hop, so a
        hop to another host never receives them.
        """
        jar = RequestsCookieJar()
        for domain, values in self.cookies.items():
            for name, value in values.items():
                jar.set(name, value, domain=domain, path="/")
        return jar


def ends_within(
    end_date: Optional[str],
    lookahead_hours: float,
    now: Optional[datetime] = None,
) -> bool:
    """
    Check that a calendar entry's end time falls inside the query window.

    The window runs from three hours ago to ``lookahead_hours`` from now.

    Args:
        end_date: ISO-8601 end time of the entry (UTC if no offset)
        lookahead_hours: Size of the forward window
        now: Reference time, defaults to the current time

    Returns:
        bool: True if the entry ends inside the window
    """
    if not end_date:
        return False
    try:
        end = date_parser.isoparse(end_date)
    except (ValueError, TypeError):
        logger.debug(f"Could not parse calendar end date '{end_date}'")
        return False

    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)

    return now - CALENDAR_LOOKBEHIND <= end <= now + timedelta(hours=lookahead_hours)


class BlackboardSession:
    """
    Authenticated session with PKU Blackboard.

    Handles:
    - IAAA credential login and SSO token exchange
    - Per-domain cookie state carried in ``SessionState``
    - Fetching the notice stream, calendar entries and detail pages

    One instance belongs to one identity; nothing is shared between
    instances.
    """

    # User agent to mimic a real browser
    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    )

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize Blackboard session.

        Args:
            settings: Optional settings instance, will use default if not provided
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.blackboard_base_url

        self.http = requests.Session()
        self.http.headers.update({"User-Agent": self.USER_AGENT})
        # Cookies travel in SessionState only; keep the transport's jar empty
        self.http.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

        self.state = SessionState()

    @property
    def is_authenticated(self) -> bool:
        """Check if the platform session has been established."""
        return self.state.stage == AuthStage.PLATFORM_AUTHENTICATED

    def login(self, username: str, password: str) -> SessionState:
        """
        Log in through IAAA and establish a Blackboard session.

        The session state is only replaced once the whole handshake has
        succeeded; a failed login leaves the previous state untouched and
        can simply be retried from scratch.

        Args:
            username: IAAA user name (student id)
            password: IAAA password in plain text

        Returns:
            SessionState: The authenticated state

        Raises:
            AuthenticationError: If IAAA rejects the credentials
            TransportError: On network errors or unexpected responses
        """
        logger.info(f"Logging in to IAAA as {username}")
        state = SessionState()

        # Stage 1: IAAA checks the credentials and issues a one-time token
        response = self._request(
            "POST",
            self.settings.iaaa_login_url,
            state,
            what="IAAA login",
            data={
                "appid": self.settings.iaaa_app_id,
                "userName": username,
                "password": password,
                "redirUrl": self.settings.sso_redirect_url,
            },
        )
        payload = self._json(response, "IAAA login", TransportError)
        if not isinstance(payload, dict) or not payload.get("success"):
            errors = payload.get("errors") if isinstance(payload, dict) else None
            reason = errors.get("msg") if isinstance(errors, dict) else None
            logger.warning(f"IAAA rejected credentials for {username}: {reason}")
            raise AuthenticationError(reason or "IAAA 登录失败，请检查学号和密码")

        token = payload.get("token")
        if not token:
            raise TransportError("IAAA login succeeded but returned no token")
        state = state.with_response_cookies(response).advance(AuthStage.IDENTITY_VERIFIED)

        # Stage 2: Blackboard validates the token and assigns s_session_id
        response = self._request(
            "GET",
            self.settings.sso_validate_url,
            state,
            what="Blackboard SSO validation",
            params={"token": token},
        )
        state = state.with_response_cookies(response).advance(AuthStage.PLATFORM_AUTHENTICATED)

        self.state = state
        logger.info(f"Login successful for user: {username}")
        return state

    def fetch_notice_feed(self) -> Dict[str, Any]:
        """
        Load the notice ("alerts") stream.

        Opens the stream viewer first, waits for the server to assemble
        the stream, then loads it. Loading too early returns partial data.

        Returns:
            dict: Stream document with ``sv_streamEntries`` and ``sv_extras``

        Raises:
            FetchError: If either request fails or the response is not JSON
        """
        self._require_authenticated()

        self._fetch(
            "GET",
            self.settings.stream_viewer_url,
            what="Opening notice stream viewer",
            params={"cmd": "view", "streamName": "alerts", "globalNavigation": "false"},
        )

        time.sleep(self.settings.notice_settle_seconds)

        response = self._fetch(
            "POST",
            self.settings.stream_viewer_url,
            what="Loading notice stream",
            data={
                "cmd": "loadStream",
                "streamName": "alerts",
                "providers": "{}",
                "forOverview": "false",
            },
        )
        data = self._json(response, "Loading notice stream", FetchError)
        if not isinstance(data, dict):
            raise FetchError("Notice stream is not a JSON object")
        return data

    def fetch_calendar_feed(self, lookahead_hours: float) -> List[Dict[str, Any]]:
        """
        Load calendar entries ending between three hours ago and the lookahead.

        The server sometimes answers with a wider range than requested, so
        every entry's end time is checked again before it is returned.

        Args:
            lookahead_hours: How far ahead to look for deadlines

        Returns:
            list: Raw calendar entries inside the window

        Raises:
            FetchError: If the request fails or the response is not a JSON list
        """
        self._require_authenticated()

        now = datetime.now(timezone.utc)
        start = now - CALENDAR_LOOKBEHIND
        end = now + timedelta(hours=lookahead_hours)

        response = self._fetch(
            "GET",
            self.settings.calendar_events_url,
            what="Loading calendar events",
            params={
                "start": int(start.timestamp() * 1000),
                "end": int(end.timestamp() * 1000),
                "course_id": "",
                "mode": "personal",
            },
        )
        entries = self._json(response, "Loading calendar events", FetchError)
        if not isinstance(entries, list):
            raise FetchError("Calendar events are not a JSON list")

        in_window = [
            entry for entry in entries
            if isinstance(entry, dict) and ends_within(entry.get("endDate"), lookahead_hours, now)
        ]
        if len(in_window) != len(entries):
            logger.debug(f"Dropped {len(entries) - len(in_window)} calendar entries outside the window")
        return in_window

    def fetch_detail_page(self, reference: Union[str, int]) -> str:
        """
        Fetch the page behind a notice or calendar entry.

        Args:
            reference: A notice's item URI (``/webapps/...`` or absolute URL),
                or a calendar entry id whose attempt page should be loaded

        Returns:
            str: Page HTML (attempt pages redirect to the upload page)

        Raises:
            FetchError: If the request fails
        """
        self._require_authenticated()

        ref = str(reference)
        if "://" in ref:
            url = ref
        elif ref.startswith("/"):
            url = f"{self.base_url}{ref}"
        else:
            url = f"{self.base_url}/webapps/calendar/launch/attempt/{ref}"

        return self._fetch("GET", url, what="Fetching detail page").text

    def close(self) -> None:
        """Release the underlying connection pool."""
        self.http.close()

    def __enter__(self) -> "BlackboardSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - drop the connection pool."""
        self.close()

    def _require_authenticated(self) -> None:
        if not self.is_authenticated:
            raise AuthenticationError("Not authenticated. Call login() first.")

    def _fetch(self, method: str, url: str, what: str, **kwargs) -> requests.Response:
        """Authenticated request that records cookies and maps failures to FetchError."""
        response = self._request(method, url, self.state, what=what, error_cls=FetchError, **kwargs)
        self.state = self.state.with_response_cookies(response)
        return response

    def _request(
        self,
        method: str,
        url: str,
        state: SessionState,
        what: str,
        error_cls: Type[TransportError] = TransportError,
        **kwargs,
    ) -> requests.Response:
        """
        Send one request carrying the cookies held in ``state``.

        Raises:
            TransportError: (or ``error_cls``) on network errors and non-2xx responses
        """
        # Domain-scoped jar, re-matched against each redirect hop
        kwargs["cookies"] = state.cookie_jar()
        kwargs.setdefault("timeout", self.settings.request_timeout)

        try:
            response = self.http.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"{what} failed: {e}")
            raise error_cls(f"{what} failed: {e}") from e

        if not response.ok:
            body = response.text[:MAX_LOGGED_BODY]
            logger.error(f"{what} failed: HTTP {response.status_code}")
            logger.error(f"Response body: {body}")
            raise error_cls(
                f"{what} failed: HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=body,
            )

        return response

    def _json(self, response: requests.Response, what: str, error_cls: Type[TransportError]) -> Any:
        try:
            return response.json()
        except ValueError as e:
            body = response.text[:MAX_LOGGED_BODY]
            logger.error(f"{what} returned invalid JSON: {body}")
            raise error_cls(
                f"{what} returned invalid JSON",
                status_code=response.status_code,
                response_body=body,
            ) from e
