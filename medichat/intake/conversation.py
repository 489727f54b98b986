"""
Conversation: one intake visit between a patient and the assistant.

A conversation owns an append-only, chronologically ordered list of
messages.  Status only ever moves forward:

    in_progress → awaiting_clinician → clinician_responded

Counts (patient turns, chief complaint) are always derived from the
message list itself, never from a separately maintained counter.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from medichat.intake.errors import InvalidTransitionError


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConversationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    AWAITING_CLINICIAN = "awaiting_clinician"
    CLINICIAN_RESPONDED = "clinician_responded"


class MessageRole(str, Enum):
    PATIENT = "patient"
    ASSISTANT = "assistant"


class ArchiveParty(str, Enum):
    PATIENT = "patient"
    CLINICIAN = "clinician"


_TRANSITIONS: dict[ConversationStatus, set[ConversationStatus]] = {
    ConversationStatus.IN_PROGRESS: {ConversationStatus.AWAITING_CLINICIAN},
    ConversationStatus.AWAITING_CLINICIAN: {ConversationStatus.CLINICIAN_RESPONDED},
    ConversationStatus.CLINICIAN_RESPONDED: set(),
}


def can_transition(current: ConversationStatus, target: ConversationStatus) -> bool:
    return target in _TRANSITIONS.get(current, set())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Sub-models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Message(BaseModel):
    id: str = Field(default_factory=_new_id)
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=_now)
    # Patient messages only; lets a retried submission be recognised
    idempotency_key: Optional[str] = None


class Attachment(BaseModel):
    """Reference to a file the patient uploaded through the upload service."""

    filename: str
    content_type: str = ""
    recorded_at: datetime = Field(default_factory=_now)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Top-level Conversation Model
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Conversation(BaseModel):
    id: str = Field(default_factory=_new_id)
    patient_id: str
    clinician_id: Optional[str] = None
    visit_number: int = Field(ge=1)
    status: ConversationStatus = ConversationStatus.IN_PROGRESS
    messages: list[Message] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)

    # Written exactly once, at handoff
    clinical_summary: Optional[str] = None
    completed_at: Optional[datetime] = None

    # Clinician response
    diagnosis: Optional[str] = None
    recommendations: Optional[str] = None
    referrals: Optional[str] = None
    clinician_notes: Optional[str] = None
    call_to_office: bool = False
    responded_at: Optional[datetime] = None

    # Each party archives independently; never affects the lifecycle
    archived_by_patient: bool = False
    archived_by_clinician: bool = False

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    FIRST_VISIT: ClassVar[int] = 1

    # ── Derived views ──

    @property
    def is_first_visit(self) -> bool:
        return self.visit_number == self.FIRST_VISIT

    def patient_turn_count(self) -> int:
        return sum(1 for m in self.messages if m.role == MessageRole.PATIENT)

    def first_patient_message(self) -> Message | None:
        for m in self.messages:
            if m.role == MessageRole.PATIENT:
                return m
        return None

    def chief_complaint(self) -> str | None:
        """The first patient message, verbatim."""
        first = self.first_patient_message()
        return first.content if first else None

    def find_by_idempotency_key(self, key: str) -> int | None:
        """Index of the patient message carrying ``key``, if any."""
        for i, m in enumerate(self.messages):
            if m.role == MessageRole.PATIENT and m.idempotency_key == key:
                return i
        return None

    def has_clinician_response(self) -> bool:
        return any((self.diagnosis, self.recommendations, self.referrals, self.clinician_notes))

    # ── Mutations ──

    def append_message(
        self,
        role: MessageRole,
        content: str,
        *,
        idempotency_key: str | None = None,
    ) -> Message:
        message = Message(
            conversation_id=self.id,
            role=role,
            content=content,
            idempotency_key=idempotency_key,
        )
        self.messages.append(message)
        return message

    def transition_to(self, target: ConversationStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(
                f"Conversation {self.id} cannot move from "
                f"{self.status.value} to {target.value}"
            )
        self.status = target

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    @classmethod
    def create_new(
        cls,
        patient_id: str,
        visit_number: int,
        opening: str | None = None,
        idempotency_key: str | None = None,
    ) -> Conversation:
        """Factory for a fresh in-progress conversation, optionally holding its first message."""
        conversation = cls(patient_id=patient_id, visit_number=visit_number)
        if opening is not None:
            conversation.append_message(
                MessageRole.PATIENT, opening, idempotency_key=idempotency_key
            )
        return conversation
