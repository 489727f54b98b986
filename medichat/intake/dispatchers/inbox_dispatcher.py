"""
Inbox Dispatcher: keeps notifications in memory for clients to poll via
GET /api/intake/notifications/{user_id}.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from functools import partial

from medichat import settings
from medichat.intake.channels import DeliveryResult, NotificationDispatcher
from medichat.intake.events import Notification

logger = logging.getLogger("intake.dispatchers.inbox")


class InboxDispatcher(NotificationDispatcher):
    """Stores the most recent notifications in memory, per recipient."""

    channel_name = "inbox"

    def __init__(self, max_per_user: int = settings.INBOX_MAX_PER_USER) -> None:
        self.max_per_user = max_per_user
        # Oldest entries drop off once a recipient holds max_per_user
        self._inbox: dict[str, deque[Notification]] = defaultdict(
            partial(deque, maxlen=max_per_user)
        )

    async def send(self, notification: Notification) -> DeliveryResult:
        self._inbox[notification.user_id].append(notification)
        logger.debug(
            "Inbox stored %s for %s",
            notification.event_type.value, notification.user_id,
        )
        return DeliveryResult(
            success=True,
            channel=self.channel_name,
            recipient=notification.user_id,
        )

    def get_notifications(self, user_id: str) -> list[Notification]:
        return list(self._inbox.get(user_id, []))

    def clear(self, user_id: str | None = None) -> None:
        """Clear stored notifications. If user_id is None, clear everything."""
        if user_id:
            self._inbox.pop(user_id, None)
        else:
            self._inbox.clear()
