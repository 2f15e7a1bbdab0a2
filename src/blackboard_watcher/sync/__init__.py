"""Feed synchronisation for Blackboard Watcher."""

from blackboard_watcher.sync.base import FeedSync
from blackboard_watcher.sync.calendar import CalendarSync
from blackboard_watcher.sync.notices import NoticeSync

__all__ = ["FeedSync", "CalendarSync", "NoticeSync"]
