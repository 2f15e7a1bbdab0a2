"""
Notification eligibility.

Decides, per course and event category, whether a newly observed item
should produce a message. Course overrides replace the global category
set entirely. Lookups use the raw course name; aliases only matter when
a message is composed.
"""

from typing import FrozenSet, Union

from blackboard_watcher.models import EventCategory, NotificationPolicy

ASSIGNMENT_EVENT_PREFIX = "AS"
CONTENT_EVENT_PREFIX = "CO"


def category_for_event(event_code: str) -> EventCategory:
    """
    Map a raw Blackboard event code to its coarse category.

    Args:
        event_code: Code such as ``AS:AS_AVAIL`` or ``CO:CO_AVAIL``

    Returns:
        EventCategory: ASSIGNMENT for ``AS*``, CONTENT for ``CO*``,
        ANNOUNCEMENT for anything else
    """
    code = event_code or ""
    if code.startswith(ASSIGNMENT_EVENT_PREFIX):
        return EventCategory.ASSIGNMENT
    if code.startswith(CONTENT_EVENT_PREFIX):
        return EventCategory.CONTENT
    return EventCategory.ANNOUNCEMENT


def allowed_categories(course: str, policy: NotificationPolicy) -> FrozenSet[EventCategory]:
    """Category set in force for a course (override first, then global)."""
    override = policy.course_events.get((course or "").lower())
    if override is not None:
        return override
    return policy.allowed_events


def is_eligible(
    course: str,
    event: Union[EventCategory, str],
    policy: NotificationPolicy,
) -> bool:
    """
    Whether an item from ``course`` with ``event`` should alert.

    Args:
        course: Untranslated course name (case-insensitive)
        event: An EventCategory, or a raw event code to be mapped
        policy: The identity's policy snapshot

    Returns:
        bool: True if the category is allowed for the course
    """
    category = event if isinstance(event, EventCategory) else category_for_event(event)
    return category in allowed_categories(course, policy)
