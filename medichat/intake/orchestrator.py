"""
Turn Orchestrator: processes one inbound patient message end to end.

    validate → (patient queue) load/create → append patient message →
    previous visit → instruction frame → reasoning → append reply →
    completion check → summary + handoff → single atomic save → notify

Every turn for a patient runs inside that patient's queue, so the
conversation snapshot read at the start of a turn is the one written at
the end of it.  The patient message is saved before the model is
called and survives an upstream failure; the reply, the status change
and the summary are written together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from medichat import settings
from medichat.intake.channels import HandoffNotifier
from medichat.intake.completion import CompletionDetector
from medichat.intake.context_builder import build_instructions
from medichat.intake.conversation import (
    Attachment,
    Conversation,
    ConversationStatus,
    MessageRole,
)
from medichat.intake.errors import (
    ConversationConflictError,
    IntakeError,
    NotFoundError,
    UpstreamServiceError,
)
from medichat.intake.queue import TurnQueueManager
from medichat.intake.reasoning import ReasoningService
from medichat.intake.store import ConversationStore, call_store
from medichat.intake.summary import SummarySynthesizer
from medichat.intake.validators import clean_filename, clean_message

logger = logging.getLogger("intake.orchestrator")


@dataclass
class TurnResult:
    reply: str
    status: ConversationStatus
    visit_number: int
    conversation_id: str
    replayed: bool = False


class TurnOrchestrator:
    def __init__(
        self,
        store: ConversationStore,
        reasoning: ReasoningService,
        queue: TurnQueueManager | None = None,
        notifier: HandoffNotifier | None = None,
        detector: CompletionDetector | None = None,
        summarizer: SummarySynthesizer | None = None,
        persistence_timeout: float = settings.PERSISTENCE_TIMEOUT_SECONDS,
        max_message_length: int = settings.MAX_MESSAGE_LENGTH,
    ) -> None:
        self._store = store
        self._reasoning = reasoning
        self._queue = queue or TurnQueueManager()
        self._notifier = notifier
        self._detector = detector or CompletionDetector()
        self._summarizer = summarizer or SummarySynthesizer(reasoning)
        self._persistence_timeout = persistence_timeout
        self._max_message_length = max_message_length

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def queue(self) -> TurnQueueManager:
        return self._queue

    async def _call_store(self, fn, *args):
        return await call_store(fn, *args, timeout=self._persistence_timeout)

    async def load_owned(self, conversation_id: str, patient_id: str) -> tuple[Conversation, int]:
        """Load a conversation, hiding it entirely from anyone but its patient."""
        conversation, generation = await self._call_store(self._store.load, conversation_id)
        if conversation.patient_id != patient_id:
            logger.warning(
                "Patient %s asked for conversation %s owned by someone else",
                patient_id, conversation_id,
            )
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation, generation

    # ── Turns ──

    async def submit_turn(
        self,
        patient_id: str,
        conversation_id: str | None,
        text: str,
        idempotency_key: str | None = None,
    ) -> TurnResult:
        """
        Handle one patient message and return the assistant's reply.

        Raises ValidationError, NotFoundError, UpstreamServiceError or
        PersistenceError; nothing is persisted on a validation failure.
        """
        cleaned = clean_message(text, self._max_message_length)
        return await self._queue.run(
            patient_id,
            lambda: self._turn(patient_id, conversation_id, cleaned, idempotency_key),
            label="turn",
        )

    async def _turn(
        self,
        patient_id: str,
        conversation_id: str | None,
        text: str,
        idempotency_key: str | None,
    ) -> TurnResult:
        if conversation_id is None:
            conversation_id = await self._retried_opening(patient_id, idempotency_key)

        if conversation_id is None:
            # A new visit is written together with its opening message
            conversation, generation = await self._call_store(
                self._store.create, patient_id, text, idempotency_key,
            )
        else:
            conversation, generation = await self.load_owned(conversation_id, patient_id)

            # A retried submission is recognised from the log itself
            seen_at = (
                conversation.find_by_idempotency_key(idempotency_key)
                if idempotency_key else None
            )
            if seen_at is None:
                conversation.append_message(
                    MessageRole.PATIENT, text, idempotency_key=idempotency_key
                )
                generation = await self._call_store(self._store.save, conversation, generation)
            else:
                answered = next(
                    (m for m in conversation.messages[seen_at + 1:] if m.role == MessageRole.ASSISTANT),
                    None,
                )
                if answered is not None:
                    logger.info(
                        "Replaying stored reply for %s (key=%s)", conversation.id, idempotency_key,
                    )
                    return self._result(conversation, answered.content, replayed=True)
                if seen_at != len(conversation.messages) - 1:
                    raise ConversationConflictError(
                        f"Message {idempotency_key} in {conversation.id} was superseded "
                        "by a later message before it was answered"
                    )
                logger.info(
                    "Retrying unanswered message for %s (key=%s)", conversation.id, idempotency_key,
                )

        pending = conversation.messages[-1]
        history = conversation.messages[:-1]

        previous = await self._previous_visit(conversation)
        instructions = build_instructions(conversation, previous)

        try:
            reply = await self._reasoning.complete(instructions, history, pending.content)
        except IntakeError:
            raise
        except Exception as exc:
            raise UpstreamServiceError(f"Reasoning service failed: {exc}") from exc

        conversation.append_message(MessageRole.ASSISTANT, reply)

        handed_off = False
        if self._detector.is_complete(conversation, reply):
            summary = await self._summarizer.synthesize(conversation)
            conversation.transition_to(ConversationStatus.AWAITING_CLINICIAN)
            conversation.clinical_summary = summary
            conversation.completed_at = datetime.now(timezone.utc)
            handed_off = True

        await self._call_store(self._store.save, conversation, generation)

        logger.info(
            "Turn %d for conversation %s (visit %d, patient %s) → %s",
            conversation.patient_turn_count(), conversation.id,
            conversation.visit_number, patient_id, conversation.status.value,
        )
        if handed_off:
            logger.info("Intake complete for %s; handed off to clinician", conversation.id)
            if self._notifier is not None:
                self._notifier.intake_complete(conversation)

        return self._result(conversation, reply)

    async def _retried_opening(self, patient_id: str, idempotency_key: str | None) -> str | None:
        """
        Id of the visit a retried opening message already created, if any.

        The caller never learned the conversation id when the first
        attempt failed, so the patient's latest visit is checked for the key.
        """
        if not idempotency_key:
            return None
        count = await self._call_store(self._store.count_for_patient, patient_id)
        if count == 0:
            return None
        latest = await self._call_store(self._store.get_by_visit, patient_id, count)
        if latest is not None and latest.find_by_idempotency_key(idempotency_key) is not None:
            return latest.id
        return None

    async def _previous_visit(self, conversation: Conversation) -> Conversation | None:
        if conversation.is_first_visit:
            return None
        try:
            return await self._call_store(
                self._store.get_by_visit,
                conversation.patient_id,
                conversation.visit_number - 1,
            )
        except IntakeError as exc:
            logger.warning(
                "Previous visit for %s unavailable, continuing without it: %s",
                conversation.id, exc,
            )
            return None

    @staticmethod
    def _result(conversation: Conversation, reply: str, replayed: bool = False) -> TurnResult:
        return TurnResult(
            reply=reply,
            status=conversation.status,
            visit_number=conversation.visit_number,
            conversation_id=conversation.id,
            replayed=replayed,
        )

    # ── Reads ──

    async def get_conversation_history(
        self,
        conversation_id: str,
        patient_id: str | None = None,
    ) -> Conversation:
        if patient_id is not None:
            conversation, _ = await self.load_owned(conversation_id, patient_id)
        else:
            conversation, _ = await self._call_store(self._store.load, conversation_id)
        return conversation

    async def list_conversations_for_patient(
        self,
        patient_id: str,
        include_archived: bool = False,
    ) -> list[Conversation]:
        conversations = await self._call_store(self._store.list_for_patient, patient_id)
        if not include_archived:
            conversations = [c for c in conversations if not c.archived_by_patient]
        return conversations

    # ── Attachments ──

    async def record_attachment(
        self,
        patient_id: str,
        conversation_id: str,
        filename: str,
        content_type: str = "",
    ) -> Conversation:
        """Record a reference to a file the upload service already stored."""
        name = clean_filename(filename)

        async def _record() -> Conversation:
            conversation, generation = await self.load_owned(conversation_id, patient_id)
            conversation.attachments.append(
                Attachment(filename=name, content_type=(content_type or "").strip())
            )
            await self._call_store(self._store.save, conversation, generation)
            logger.info("Attachment %s recorded on %s", name, conversation_id)
            return conversation

        return await self._queue.run(patient_id, _record, label="attachment")
