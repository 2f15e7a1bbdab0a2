"""
Data models for Blackboard Watcher.

Defines Pydantic models for:
- Stored credentials and per-identity notification policy
- Normalized feed items (notices and calendar entries)
- Durable notice / assignment records
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# Record id written by earlier deployments to mark a completed first run.
LEGACY_INIT_ID = "%init%"

# Calendar name Blackboard gives to a user's own (non-course) events
PERSONAL_CALENDAR = "个人"

MIN_LOOKAHEAD_HOURS = 3
MAX_LOOKAHEAD_HOURS = 48


class EventCategory(str, Enum):
    """Coarse notice categories a user can subscribe to."""
    ASSIGNMENT = "assignment"
    CONTENT = "content"
    ANNOUNCEMENT = "announcement"


# Digit encoding used by stored configurations ("123" = everything)
_LEGACY_CATEGORY_CODES = {
    "1": EventCategory.ASSIGNMENT,
    "2": EventCategory.CONTENT,
    "3": EventCategory.ANNOUNCEMENT,
}


class FeedKind(str, Enum):
    """The two feeds tracked for every identity."""
    NOTICE = "notice"
    CALENDAR = "calendar"


def _coerce_categories(value: Any) -> Any:
    """Accept enum members, enum values, or legacy digit strings like "13"."""
    if value is None or value == "":
        return frozenset()
    if isinstance(value, str):
        if value and all(ch in _LEGACY_CATEGORY_CODES for ch in value):
            return frozenset(_LEGACY_CATEGORY_CODES[ch] for ch in value)
        value = [value]
    elif isinstance(value, int) and not isinstance(value, bool):
        # JSON-decoded digit codes, e.g. 13
        return _coerce_categories(str(value))
    elif not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError(f"Unsupported event categories: {value!r}")
    categories = set()
    for item in value:
        if isinstance(item, int) and not isinstance(item, bool):
            item = str(item)
        if isinstance(item, str) and item in _LEGACY_CATEGORY_CODES:
            categories.add(_LEGACY_CATEGORY_CODES[item])
        else:
            categories.add(EventCategory(item))
    return frozenset(categories)


def _coerce_mapping(value: Any) -> Dict[str, Any]:
    """Decode a JSON object if needed and lower-case its course keys."""
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed course mapping in policy")
            return {}
    if not isinstance(value, dict):
        return {}
    return {str(k).lower(): v for k, v in value.items()}


class Credential(BaseModel):
    """
    IAAA login bound to an identity.

    Attributes:
        identity_id: Opaque id of the tracked user (the Telegram chat id)
        username: IAAA user name (student id)
        secret: Vault-encrypted IAAA password
    """
    identity_id: str
    username: str
    secret: str


class NotificationPolicy(BaseModel):
    """
    Per-identity notification settings.

    An immutable snapshot read once per check. Course-keyed mappings use
    the untranslated course name, lower-cased.
    """
    model_config = ConfigDict(frozen=True)

    notify_notice: bool = True
    notify_calendar: bool = True
    allowed_events: FrozenSet[EventCategory] = frozenset(EventCategory)
    course_events: Dict[str, FrozenSet[EventCategory]] = Field(default_factory=dict)
    course_aliases: Dict[str, str] = Field(default_factory=dict)
    notice_prefix: str = "[教学网]"
    calendar_prefix: str = "[DDL!]"
    calendar_lookahead_hours: int = 24

    @field_validator("allowed_events", mode="before")
    @classmethod
    def validate_allowed_events(cls, v: Any) -> Any:
        return _coerce_categories(v)

    @field_validator("course_events", mode="before")
    @classmethod
    def validate_course_events(cls, v: Any) -> Dict[str, Any]:
        return {
            course: _coerce_categories(events)
            for course, events in _coerce_mapping(v).items()
        }

    @field_validator("course_aliases", mode="before")
    @classmethod
    def validate_course_aliases(cls, v: Any) -> Dict[str, Any]:
        return _coerce_mapping(v)

    @field_validator("calendar_lookahead_hours")
    @classmethod
    def validate_lookahead(cls, v: int) -> int:
        """Clamp the lookahead window into the supported range."""
        clamped = min(max(v, MIN_LOOKAHEAD_HOURS), MAX_LOOKAHEAD_HOURS)
        if clamped != v:
            logger.warning(f"Calendar lookahead {v}h out of range, using {clamped}h")
        return clamped

    def display_name(self, course: str) -> str:
        """Alias for a course if the user configured one."""
        return self.course_aliases.get(course.lower()) or course


class FeedItem(BaseModel):
    """
    A notice or calendar entry normalized for evaluation.

    Attributes:
        remote_id: Id of the entry on the platform
        time: Display time (posting time for notices, deadline for calendar entries)
        course: Course name without term suffix
        title: Plain-text title
        body: Plain-text body, possibly enriched from the detail page
        event: Raw platform event code (notices only)
        category: Coarse category used for eligibility
        should_notify: Whether this item warrants a message
    """
    remote_id: str
    time: str
    course: str = ""
    title: str = ""
    body: str = ""
    event: str = ""
    category: Optional[EventCategory] = None
    should_notify: bool = False


class NoticeRecord(BaseModel):
    """A notice that has been evaluated for an identity."""
    identity_id: str
    notice_id: str
    time: str
    course: str
    title: str
    content: str
    event: str
    should_notify: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def remote_id(self) -> str:
        return self.notice_id

    @classmethod
    def from_item(cls, identity_id: str, item: FeedItem) -> "NoticeRecord":
        return cls(
            identity_id=identity_id,
            notice_id=item.remote_id,
            time=item.time,
            course=item.course,
            title=item.title,
            content=item.body,
            event=item.event,
            should_notify=item.should_notify,
        )


class AssignmentRecord(BaseModel):
    """A calendar entry that has been evaluated for an identity."""
    identity_id: str
    assignment_id: str
    time: str
    course: str
    title: str
    description: str
    should_notify: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def remote_id(self) -> str:
        return self.assignment_id

    @classmethod
    def from_item(cls, identity_id: str, item: FeedItem) -> "AssignmentRecord":
        return cls(
            identity_id=identity_id,
            assignment_id=item.remote_id,
            time=item.time,
            course=item.course,
            title=item.title,
            description=item.body,
            should_notify=item.should_notify,
        )


Record = Union[NoticeRecord, AssignmentRecord]

RECORD_TYPES = {
    FeedKind.NOTICE: NoticeRecord,
    FeedKind.CALENDAR: AssignmentRecord,
}


class SyncResult(BaseModel):
    """Outcome of one sync pass over one feed."""
    feed_kind: FeedKind
    first_run: bool
    new_items: int = 0
    notified: int = 0
    delivery_failures: int = 0
    persistence_failures: int = 0
