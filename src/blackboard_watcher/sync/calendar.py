"""
Calendar deadline synchronisation.

Reads calendar entries ending within the identity's lookahead window and
reminds about the ones still open.
"""

import logging
from typing import Any, Dict, List, Tuple

from blackboard_watcher.errors import FetchError
from blackboard_watcher.extraction import extract_instruction, has_been_attempted, remove_term_suffix
from blackboard_watcher.models import PERSONAL_CALENDAR, EventCategory, FeedItem, FeedKind
from blackboard_watcher.policy import is_eligible
from blackboard_watcher.sync.base import FeedSync

logger = logging.getLogger(__name__)


class CalendarSync(FeedSync):
    """
    Syncs upcoming calendar deadlines.

    Personal events are always reminded. Course deadlines follow the
    policy for assignments and are dropped once the attempt page shows
    something was already handed in.
    """

    feed_kind = FeedKind.CALENDAR

    def fetch_entries(self) -> List[Dict[str, Any]]:
        return self.session.fetch_calendar_feed(self.policy.calendar_lookahead_hours)

    def entry_id(self, entry: Dict[str, Any]) -> str:
        return str(entry.get("id") or "")

    def normalize(self, entry: Dict[str, Any], first_run: bool) -> FeedItem:
        remote_id = self.entry_id(entry)
        course = remove_term_suffix(entry.get("calendarName") or "")
        description = entry.get("description") or ""

        if course == PERSONAL_CALENDAR:
            category = None
            should_notify = True
        else:
            category = EventCategory.ASSIGNMENT
            should_notify = is_eligible(course, category, self.policy)
            if should_notify and not first_run:
                should_notify, description = self._check_submission(remote_id, description)

        return FeedItem(
            remote_id=remote_id,
            time=self.format_iso(entry.get("endDate")),
            course=course,
            title=entry.get("title") or "",
            body=description.strip(),
            category=category,
            should_notify=should_notify,
        )

    def compose(self, item: FeedItem) -> str:
        return self.formatter.format_assignment(item, self.policy)

    def init_message(self, synced_count: int) -> str:
        return self.formatter.format_calendar_init()

    def _check_submission(self, calendar_id: str, description: str) -> Tuple[bool, str]:
        """
        Look at the attempt page of a course deadline.

        Returns:
            tuple: (still worth reminding, description with instructions added)
        """
        try:
            html = self.session.fetch_detail_page(calendar_id)
        except FetchError as e:
            logger.warning(f"Could not load attempt page for calendar entry {calendar_id}: {e}")
            return True, description

        if has_been_attempted(html):
            logger.debug(f"Calendar entry {calendar_id} already attempted")
            return False, description

        instruction = extract_instruction(html)
        if instruction:
            description = f"{description}\n{instruction}"
        return True, description
