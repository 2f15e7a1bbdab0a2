"""
Notice stream synchronisation.

Reads the Blackboard "alerts" stream, where each entry announces new
course content, an assignment, or an announcement.
"""

import logging
from typing import Any, Dict, List

from blackboard_watcher.errors import FetchError
from blackboard_watcher.extraction import (
    extract_body,
    extract_instruction,
    extract_title,
    remove_term_suffix,
)
from blackboard_watcher.models import EventCategory, FeedItem, FeedKind
from blackboard_watcher.policy import category_for_event, is_eligible
from blackboard_watcher.sync.base import FeedSync

logger = logging.getLogger(__name__)


class NoticeSync(FeedSync):
    """
    Syncs the notice stream.

    New assignment notices that will be notified are enriched with the
    assignment's instructions, attachments and deadline, taken from the
    linked upload page.
    """

    feed_kind = FeedKind.NOTICE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Course id -> name, filled from the stream's extras on fetch
        self.course_names: Dict[str, str] = {}

    def fetch_entries(self) -> List[Dict[str, Any]]:
        data = self.session.fetch_notice_feed()

        # Entries only carry a course id; names come from the extras block
        extras = data.get("sv_extras") or {}
        self.course_names = {
            str(course.get("id")): remove_term_suffix(course.get("name") or "")
            for course in extras.get("sx_courses") or []
            if isinstance(course, dict)
        }

        return [entry for entry in data.get("sv_streamEntries") or [] if isinstance(entry, dict)]

    def entry_id(self, entry: Dict[str, Any]) -> str:
        return str(entry.get("se_id") or "")

    def normalize(self, entry: Dict[str, Any], first_run: bool) -> FeedItem:
        event = (entry.get("extraAttribs") or {}).get("event_type") or ""
        category = category_for_event(event)
        course = self.course_names.get(str(entry.get("se_courseId")), "")
        should_notify = is_eligible(course, category, self.policy)
        body = extract_body(entry.get("se_details") or "")

        item_uri = entry.get("se_itemUri")
        if category == EventCategory.ASSIGNMENT and should_notify and item_uri and not first_run:
            body = self._enrich(entry, item_uri, body)

        return FeedItem(
            remote_id=self.entry_id(entry),
            time=self.format_epoch_ms(entry.get("se_timestamp")),
            course=course,
            title=extract_title(entry.get("se_context") or ""),
            body=body.strip(),
            event=event,
            category=category,
            should_notify=should_notify,
        )

    def compose(self, item: FeedItem) -> str:
        return self.formatter.format_notice(item, self.policy)

    def init_message(self, synced_count: int) -> str:
        return self.formatter.format_notice_init(synced_count)

    def _enrich(self, entry: Dict[str, Any], item_uri: str, body: str) -> str:
        """Append instructions and deadline from the assignment page."""
        try:
            html = self.session.fetch_detail_page(item_uri)
        except FetchError as e:
            logger.warning(f"Could not load assignment page for notice {entry.get('se_id')}: {e}")
            return body

        parts = [body]
        instruction = extract_instruction(html)
        if instruction:
            parts.append(instruction)

        details = (entry.get("itemSpecificData") or {}).get("notificationDetails") or {}
        deadline = details.get("dueDate")
        if deadline:
            parts.append(f"截止时间：{self.format_iso(deadline)}")

        return "\n".join(parts)
