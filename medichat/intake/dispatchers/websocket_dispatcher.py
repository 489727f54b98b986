"""
WebSocket Dispatcher: pushes notifications to connected WebSocket clients.

Clients connect through ``/api/intake/ws/notifications/{user_id}``; the
router registers each socket here and removes it on disconnect.  A user
with no live connection is not an error: the inbox dispatcher keeps a
copy for polling.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from fastapi import WebSocket

from medichat.intake.channels import DeliveryResult, NotificationDispatcher
from medichat.intake.events import Notification

logger = logging.getLogger("intake.dispatchers.websocket")


class WebSocketDispatcher(NotificationDispatcher):
    """Push notifications to every live socket of the recipient."""

    channel_name = "websocket"

    def __init__(self) -> None:
        # user_id → connected sockets
        self._connections: dict[str, list[WebSocket]] = defaultdict(list)

    def connect(self, user_id: str, websocket: WebSocket) -> None:
        self._connections[user_id].append(websocket)
        logger.info("WebSocket connected for %s (%d live)", user_id, len(self._connections[user_id]))

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        sockets = self._connections.get(user_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self._connections.pop(user_id, None)
        logger.info("WebSocket disconnected for %s", user_id)

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, []))

    async def send(self, notification: Notification) -> DeliveryResult:
        sockets = list(self._connections.get(notification.user_id, []))
        if not sockets:
            logger.debug("No live WebSocket for %s", notification.user_id)
            return DeliveryResult(
                success=True,
                channel=self.channel_name,
                recipient=notification.user_id,
            )

        body = notification.model_dump(mode="json")
        failures = 0
        for ws in sockets:
            try:
                await ws.send_json(body)
            except Exception as exc:
                failures += 1
                logger.warning("WebSocket push to %s failed: %s", notification.user_id, exc)
                self.disconnect(notification.user_id, ws)

        if failures == len(sockets):
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=notification.user_id,
                error="all live connections failed",
            )
        return DeliveryResult(
            success=True,
            channel=self.channel_name,
            recipient=notification.user_id,
        )
