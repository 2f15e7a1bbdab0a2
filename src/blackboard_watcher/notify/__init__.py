"""Telegram notification module for Blackboard Watcher."""

from blackboard_watcher.notify.telegram import TelegramNotifier
from blackboard_watcher.notify.formatters import MessageFormatter

__all__ = ["TelegramNotifier", "MessageFormatter"]
