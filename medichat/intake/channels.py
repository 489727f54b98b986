"""
Notification channels: outbound delivery of handoff events.

The orchestrator and clinician service never talk to a transport
directly.  They hand a Notification to the HandoffNotifier, which fans it
out through every registered NotificationDispatcher in the background.
Delivery is best-effort: failures are logged and never reach the turn.

Adding a channel is:
  1. Implement a NotificationDispatcher subclass
  2. Register it in setup.py
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from medichat.intake.conversation import Conversation
from medichat.intake.events import CLINICIANS_CHANNEL, Notification, NotificationType

logger = logging.getLogger("intake.channels")


class DeliveryResult(BaseModel):
    """Outcome of a single notification delivery attempt."""

    success: bool
    channel: str
    recipient: str
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationDispatcher(ABC):
    """Abstract outbound channel."""

    channel_name: str = ""  # overridden by subclasses

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Deliver a single notification. Must not raise; return DeliveryResult."""


class DispatcherRegistry:
    """Registry of active NotificationDispatchers."""

    def __init__(self) -> None:
        self._dispatchers: dict[str, NotificationDispatcher] = {}

    def register(self, dispatcher: NotificationDispatcher) -> None:
        name = dispatcher.channel_name
        self._dispatchers[name] = dispatcher
        logger.info("Registered notification dispatcher: %s", name)

    def unregister(self, channel_name: str) -> None:
        self._dispatchers.pop(channel_name, None)

    def get(self, channel_name: str) -> NotificationDispatcher | None:
        return self._dispatchers.get(channel_name)

    @property
    def registered_channels(self) -> list[str]:
        return list(self._dispatchers.keys())

    async def _dispatch_one(
        self, dispatcher: NotificationDispatcher, notification: Notification
    ) -> DeliveryResult:
        """Send through one dispatcher with a single retry."""
        error = ""
        for attempt in range(2):
            try:
                result = await dispatcher.send(notification)
                if result.success:
                    return result
                error = result.error or "delivery failed"
            except Exception as exc:
                error = str(exc)
            if attempt == 0:
                logger.warning(
                    "Dispatch to %s on %s failed (attempt 1): %s, retrying",
                    notification.user_id, dispatcher.channel_name, error,
                )
                await asyncio.sleep(0.5)

        logger.error(
            "Dispatch to %s on %s failed after retry: %s",
            notification.user_id, dispatcher.channel_name, error,
        )
        return DeliveryResult(
            success=False,
            channel=dispatcher.channel_name,
            recipient=notification.user_id,
            error=error,
        )

    async def dispatch(self, notification: Notification) -> list[DeliveryResult]:
        """Deliver one notification through every registered channel."""
        results = []
        for dispatcher in list(self._dispatchers.values()):
            results.append(await self._dispatch_one(dispatcher, notification))
        return results


class HandoffNotifier:
    """
    Fire-and-forget publisher of conversation state changes.

    ``publish`` returns immediately; delivery runs as a background task
    that holds a strong reference until it finishes.
    """

    def __init__(self, registry: DispatcherRegistry) -> None:
        self._registry = registry
        self._pending: set[asyncio.Task] = set()

    @property
    def registry(self) -> DispatcherRegistry:
        return self._registry

    def publish(self, user_id: str, notification: Notification) -> None:
        if notification.user_id != user_id:
            notification = notification.model_copy(update={"user_id": user_id})
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(notification))
        except RuntimeError as exc:
            logger.error("Cannot publish %s to %s: %s", notification.event_type.value, user_id, exc)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: Notification) -> None:
        try:
            results = await self._registry.dispatch(notification)
        except Exception as exc:
            logger.error(
                "Notification %s to %s failed: %s",
                notification.event_type.value, notification.user_id, exc,
                exc_info=True,
            )
            return
        delivered = [r.channel for r in results if r.success]
        logger.info(
            "Notification %s for conversation %s → %s via %s",
            notification.event_type.value, notification.conversation_id,
            notification.user_id, delivered or "no channel",
        )

    async def flush(self) -> None:
        """Wait for every in-flight delivery (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Domain events ──

    def intake_complete(self, conversation: Conversation) -> None:
        clinician = conversation.clinician_id or CLINICIANS_CHANNEL
        self.publish(
            clinician,
            Notification.for_conversation(
                NotificationType.INTAKE_COMPLETE,
                clinician,
                conversation,
                message=f"New intake ready for review (visit #{conversation.visit_number})",
            ),
        )
        self.publish(
            conversation.patient_id,
            Notification.for_conversation(
                NotificationType.INTAKE_COMPLETE,
                conversation.patient_id,
                conversation,
                message="Your information has been sent to the doctor for review.",
            ),
        )

    def clinician_responded(self, conversation: Conversation) -> None:
        self.publish(
            conversation.patient_id,
            Notification.for_conversation(
                NotificationType.CLINICIAN_RESPONDED,
                conversation.patient_id,
                conversation,
                message="The doctor has responded to your consultation.",
                clinician_id=conversation.clinician_id,
                call_to_office=conversation.call_to_office,
            ),
        )
