"""Notification port — how reminders reach a caregiver.

Core modules send through this protocol and never import a messaging SDK.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Delivers a plain-text message to a linked chat."""

    async def send_message(self, chat_id: int, text: str) -> None: ...
