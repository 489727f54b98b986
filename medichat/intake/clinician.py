"""
Clinician Review: the human side of the handoff.

Clinicians see conversations waiting for them, answer with a structured
response (diagnosis, recommendations, referrals, notes) and can archive
conversations from their own view.  Patients archive from theirs; the
two flags are independent and never touch the lifecycle.

Mutations run in the owning patient's queue, so a clinician response can
never interleave with a late patient turn.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from medichat import settings
from medichat.intake.channels import HandoffNotifier
from medichat.intake.conversation import ArchiveParty, Conversation, ConversationStatus
from medichat.intake.errors import NotFoundError, ValidationError
from medichat.intake.queue import TurnQueueManager
from medichat.intake.store import ConversationStore, call_store
from medichat.intake.validators import clean_clinician_response

logger = logging.getLogger("intake.clinician")


class ClinicianReviewService:
    def __init__(
        self,
        store: ConversationStore,
        queue: TurnQueueManager,
        notifier: HandoffNotifier | None = None,
        persistence_timeout: float = settings.PERSISTENCE_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._queue = queue
        self._notifier = notifier
        self._persistence_timeout = persistence_timeout

    async def _call_store(self, fn, *args):
        return await call_store(fn, *args, timeout=self._persistence_timeout)

    async def _owner_of(self, conversation_id: str) -> str:
        conversation, _ = await self._call_store(self._store.load, conversation_id)
        return conversation.patient_id

    async def list_pending(self, clinician_id: str | None = None) -> list[Conversation]:
        """Conversations awaiting a clinician, oldest handoff first."""
        pending = await self._call_store(
            self._store.list_by_status, ConversationStatus.AWAITING_CLINICIAN
        )
        pending = [c for c in pending if not c.archived_by_clinician]
        if clinician_id is not None:
            pending = [c for c in pending if c.clinician_id in (None, clinician_id)]
        return sorted(pending, key=lambda c: c.completed_at or c.created_at)

    async def respond(
        self,
        conversation_id: str,
        clinician_id: str,
        diagnosis: str,
        recommendations: str,
        referrals: str = "",
        notes: str = "",
        call_to_office: bool = False,
    ) -> Conversation:
        if not (clinician_id or "").strip():
            raise ValidationError("Clinician id is required")
        fields = clean_clinician_response(diagnosis, recommendations, referrals, notes)
        patient_id = await self._owner_of(conversation_id)

        async def _respond() -> Conversation:
            conversation, generation = await self._call_store(self._store.load, conversation_id)
            conversation.transition_to(ConversationStatus.CLINICIAN_RESPONDED)
            conversation.diagnosis = fields["diagnosis"]
            conversation.recommendations = fields["recommendations"]
            conversation.referrals = fields["referrals"]
            conversation.clinician_notes = fields["clinician_notes"]
            conversation.call_to_office = call_to_office
            conversation.clinician_id = clinician_id
            conversation.responded_at = datetime.now(timezone.utc)
            await self._call_store(self._store.save, conversation, generation)
            return conversation

        conversation = await self._queue.run(patient_id, _respond, label="clinician_response")
        logger.info(
            "Clinician %s responded to %s (call_to_office=%s)",
            clinician_id, conversation_id, call_to_office,
        )
        if self._notifier is not None:
            self._notifier.clinician_responded(conversation)
        return conversation

    async def set_archived(
        self,
        conversation_id: str,
        party: ArchiveParty,
        archived: bool,
        patient_id: str | None = None,
    ) -> Conversation:
        owner = await self._owner_of(conversation_id)
        if party == ArchiveParty.PATIENT:
            if patient_id is None:
                raise ValidationError("Patient id is required to archive as patient")
            if owner != patient_id:
                raise NotFoundError(f"Conversation {conversation_id} not found")

        async def _archive() -> Conversation:
            conversation, generation = await self._call_store(self._store.load, conversation_id)
            if party == ArchiveParty.PATIENT:
                conversation.archived_by_patient = archived
            else:
                conversation.archived_by_clinician = archived
            await self._call_store(self._store.save, conversation, generation)
            return conversation

        conversation = await self._queue.run(owner, _archive, label="archive")
        logger.info(
            "Conversation %s %s by %s",
            conversation_id, "archived" if archived else "unarchived", party.value,
        )
        return conversation
