"""
Message formatters for Telegram notifications.

Turns normalized feed items into the plain-text reminders users receive.
Course aliases are applied here and nowhere else.
"""

from typing import Optional

from blackboard_watcher.errors import (
    AuthenticationError,
    DecryptionError,
    PersistenceError,
    TransportError,
)
from blackboard_watcher.models import PERSONAL_CALENDAR, FeedItem, FeedKind, NotificationPolicy

COURSE_SEPARATOR = "："

FEED_LABELS = {
    FeedKind.NOTICE: "通知",
    FeedKind.CALENDAR: "日程",
}


class MessageFormatter:
    """
    Formats notification content for Telegram messages.

    Every message is a subject line followed by the item's text and its
    time field.
    """

    @staticmethod
    def _subject(prefix: str, course: str, title: str) -> str:
        sep = COURSE_SEPARATOR if course else ""
        return f"{prefix} {course}{sep}{title}"

    @classmethod
    def format_notice(cls, item: FeedItem, policy: NotificationPolicy) -> str:
        """
        Format a new notice.

        Args:
            item: The notice to format
            policy: Policy supplying prefix and course aliases

        Returns:
            str: Formatted message string
        """
        course = policy.display_name(item.course) if item.course else ""
        subject = cls._subject(policy.notice_prefix, course, item.title)
        body = f"{item.body}\n发布时间：{item.time}"
        return f"{subject}\n{body.strip()}"

    @classmethod
    def format_assignment(cls, item: FeedItem, policy: NotificationPolicy) -> str:
        """
        Format an upcoming calendar deadline.

        Personal events carry no course, so only the title is shown.

        Args:
            item: The calendar entry to format
            policy: Policy supplying prefix and course aliases

        Returns:
            str: Formatted message string
        """
        if item.course == PERSONAL_CALENDAR:
            subject = f"{policy.calendar_prefix} {item.title}"
        else:
            course = policy.display_name(item.course) if item.course else ""
            subject = cls._subject(policy.calendar_prefix, course, item.title)
        body = f"{item.body}\n截止时间：{item.time}"
        return f"{subject}\n{body.strip()}"

    @staticmethod
    def format_notice_init(synced_count: int) -> str:
        """Message sent once when the notice feed is first synced."""
        return (
            "通知提醒模块首次运行成功！\n"
            f"初始化已完成，从教学网同步了 {synced_count} 条已有通知。"
            "之后就可以自动检测新的通知并提醒您了~"
        )

    @staticmethod
    def format_calendar_init() -> str:
        """Message sent once when the calendar feed is first synced."""
        return "日程提醒模块首次运行成功！\n之后就可以自动在作业、事件截止前提醒您了~"

    @staticmethod
    def format_error(error: Exception, feed_kind: Optional[FeedKind] = None) -> str:
        """
        Summarize a failure for the user.

        Args:
            error: The failure to report
            feed_kind: Feed being processed when it happened, if any

        Returns:
            str: One human-readable line, never a traceback
        """
        if isinstance(error, AuthenticationError):
            return f"IAAA 登录失败：{error}"
        if isinstance(error, DecryptionError):
            return "无法解密已绑定的 IAAA 密码，请重新绑定账号"

        if feed_kind is not None:
            context = f"处理{FEED_LABELS[feed_kind]}时发生错误"
        else:
            context = "查询教学网时发生错误"

        if isinstance(error, TransportError):
            return f"{context}：网络请求失败（{error}），将在下次定时检查时重试"
        if isinstance(error, PersistenceError):
            return f"{context}：数据库读写失败（{error}）"
        return f"{context}：{error}"
