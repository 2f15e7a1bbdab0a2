"""
Telegram Bot API client.

Sends notifications via Telegram Bot API.
https://core.telegram.org/bots/api
"""

import logging
from typing import List, Optional

import requests

from blackboard_watcher.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Telegram Bot API endpoint
TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"

# Telegram allows 4096 characters per message; leave some buffer
MAX_MESSAGE_LENGTH = 4000


class TelegramNotifier:
    """
    Telegram Bot API client for sending notifications.

    Identities are Telegram chat ids, so ``deliver`` sends straight to
    the identity being checked.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize Telegram notifier.

        Args:
            token: Telegram Bot API token (from @BotFather)
            settings: Optional settings instance, will use default if not provided
        """
        self.settings = settings or get_settings()
        self.token = token or self.settings.telegram_bot_token

        self.api_url = TELEGRAM_API_URL.format(token=self.token)
        self.session = requests.Session()

    def deliver(self, identity_id: str, text: str) -> bool:
        """
        Deliver a message to an identity, splitting it if necessary.

        Args:
            identity_id: Telegram chat id of the recipient
            text: Plain-text message

        Returns:
            bool: True if every part was sent
        """
        success = True
        for i, part in enumerate(self._split(text)):
            if i > 0:
                part = f"(...continued)\n\n{part}"
            if not self.send_message(identity_id, part):
                success = False
        return success

    def send_message(self, chat_id: str, message: str) -> bool:
        """
        Send a single text message via Telegram.

        Messages are sent without a parse mode; course titles routinely
        contain characters Markdown would choke on.

        Args:
            chat_id: Recipient chat id
            message: The message text to send

        Returns:
            bool: True if message was sent successfully
        """
        payload = {
            "chat_id": chat_id,
            "text": message,
            "disable_web_page_preview": True,
        }

        try:
            response = self.session.post(self.api_url, json=payload, timeout=30)

            if response.status_code == 200:
                data = response.json()
                if data.get("ok"):
                    message_id = data.get("result", {}).get("message_id", "unknown")
                    logger.info(f"Telegram message sent successfully: {message_id}")
                    return True
                else:
                    logger.error(f"Telegram API error: {data.get('description')}")
                    return False
            else:
                logger.error(
                    f"Telegram API error: {response.status_code} - {response.text}"
                )
                return False

        except requests.exceptions.Timeout:
            logger.error("Telegram API request timed out")
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f"Telegram API request failed: {e}")
            return False

    @staticmethod
    def _split(message: str) -> List[str]:
        """Split a long message on paragraph boundaries."""
        if len(message) <= MAX_MESSAGE_LENGTH:
            return [message]

        parts: List[str] = []
        current_part = ""

        for paragraph in message.split("\n\n"):
            if len(current_part) + len(paragraph) + 2 > MAX_MESSAGE_LENGTH:
                if current_part:
                    parts.append(current_part.strip())
                current_part = paragraph
            else:
                current_part += "\n\n" + paragraph if current_part else paragraph

        if current_part:
            parts.append(current_part.strip())

        return parts
