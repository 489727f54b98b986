"""
Notification events: what the intake engine tells the outside world.

Every state change worth pushing to a patient or clinician is wrapped in
the same Notification model.  Dispatchers only read ``user_id`` for
routing; the rest is payload for the client.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from medichat.intake.conversation import Conversation

# Shared recipient for handoffs with no assigned clinician
CLINICIANS_CHANNEL = "clinicians"


class NotificationType(str, Enum):
    INTAKE_COMPLETE = "intake_complete"
    CLINICIAN_RESPONDED = "clinician_responded"


class Notification(BaseModel):
    notification_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: NotificationType
    user_id: str
    conversation_id: str
    patient_id: str
    visit_number: int
    status: str
    message: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_conversation(
        cls,
        event_type: NotificationType,
        user_id: str,
        conversation: Conversation,
        message: str = "",
        **payload: Any,
    ) -> "Notification":
        return cls(
            event_type=event_type,
            user_id=user_id,
            conversation_id=conversation.id,
            patient_id=conversation.patient_id,
            visit_number=conversation.visit_number,
            status=conversation.status.value,
            message=message,
            payload=payload,
        )
