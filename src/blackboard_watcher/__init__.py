"""
Blackboard Watcher

Monitors the PKU Blackboard course platform on behalf of bound users -
tracks new notices and upcoming calendar deadlines and sends Telegram
reminders according to each user's notification policy.
"""

__version__ = "1.0.0"
