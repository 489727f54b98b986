from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from medichat.intake.conversation import Attachment, Conversation, Message


class TurnRequest(BaseModel):
    patient_id: str
    message: str
    conversation_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class TurnResponse(BaseModel):
    conversation_id: str
    visit_number: int
    status: str
    reply: str
    replayed: bool = False


class ConversationSummary(BaseModel):
    """List view: no transcript."""

    id: str
    patient_id: str
    visit_number: int
    status: str
    chief_complaint: Optional[str] = None
    patient_turns: int = 0
    completed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    archived_by_patient: bool = False
    archived_by_clinician: bool = False
    created_at: datetime

    @classmethod
    def from_conversation(cls, c: Conversation) -> "ConversationSummary":
        return cls(
            id=c.id,
            patient_id=c.patient_id,
            visit_number=c.visit_number,
            status=c.status.value,
            chief_complaint=c.chief_complaint(),
            patient_turns=c.patient_turn_count(),
            completed_at=c.completed_at,
            responded_at=c.responded_at,
            archived_by_patient=c.archived_by_patient,
            archived_by_clinician=c.archived_by_clinician,
            created_at=c.created_at,
        )


class ConversationDetail(BaseModel):
    id: str
    patient_id: str
    clinician_id: Optional[str] = None
    visit_number: int
    status: str
    messages: List[Message]
    attachments: List[Attachment]
    clinical_summary: Optional[str] = None
    completed_at: Optional[datetime] = None
    diagnosis: Optional[str] = None
    recommendations: Optional[str] = None
    referrals: Optional[str] = None
    clinician_notes: Optional[str] = None
    call_to_office: bool = False
    responded_at: Optional[datetime] = None
    archived_by_patient: bool = False
    archived_by_clinician: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_conversation(cls, c: Conversation) -> "ConversationDetail":
        data = c.model_dump()
        data["status"] = c.status.value
        return cls(**data)


class AttachmentRequest(BaseModel):
    filename: str
    content_type: str = ""


class ArchiveRequest(BaseModel):
    archived: bool = True


class ClinicianResponseRequest(BaseModel):
    clinician_id: str
    diagnosis: str
    recommendations: str
    referrals: str = ""
    notes: str = ""
    call_to_office: bool = False
