"""Telegram notification adapter — implements NotificationPort.

Focus timers push their completion notice through this wrapper around the
bot instance owned by the running Application.
"""

from __future__ import annotations

import logging

from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text)
        logger.debug("Notification pushed to chat %s", chat_id)
