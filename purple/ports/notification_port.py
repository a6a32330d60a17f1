"""Notification port — pushes unsolicited messages to the owner.

Used by focus timers to announce a finished pomodoro; the chat surface
supplies the concrete implementation.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Outbound channel to a chat id."""

    async def send_message(self, chat_id: int, text: str) -> None: ...
