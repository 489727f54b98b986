"""
Conversation Store: durable, append-only conversation log.

Two backends share one contract:

  - ``InMemoryConversationStore``  (development, tests)
  - ``GCSConversationStore``       (one JSON document per conversation)

Both use optimistic locking: ``load`` returns a generation number and
``save`` only succeeds if nobody else wrote in between.  Every save is
also checked against the stored copy so the message log can only grow,
identity fields never change, status only moves forward, and the
clinical summary is written once.

GCS layout:
    conversations/patient_{patient_id}/visit_{nnnn}.json
    conversation_index/{conversation_id}.json   → {patient_id, visit_number}
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

from google.api_core.exceptions import NotFound, PreconditionFailed

from medichat.intake.conversation import (
    Conversation,
    ConversationStatus,
    can_transition,
)
from medichat.intake.errors import (
    ConversationConflictError,
    IntakeError,
    NotFoundError,
    PersistenceError,
)

logger = logging.getLogger("intake.store")

T = TypeVar("T")

async def call_store(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """
    Run a blocking store method in a worker thread, bounded by ``timeout``.

    A timed-out write may still land afterwards; it is either the whole
    conversation or nothing, and a retried turn sees it.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise PersistenceError(f"Conversation store timed out after {timeout}s") from e
    except IntakeError:
        raise
    except Exception as e:
        logger.error("Conversation store call %s failed: %s", getattr(fn, "__name__", fn), e, exc_info=True)
        raise PersistenceError(f"Conversation store failed: {e}") from e


def validate_update(stored: Conversation, updated: Conversation) -> None:
    """Reject any write that would rewrite history."""
    if updated.id != stored.id:
        raise PersistenceError(f"Conversation id mismatch: {stored.id} vs {updated.id}")
    if updated.patient_id != stored.patient_id or updated.visit_number != stored.visit_number:
        raise PersistenceError(f"Conversation {stored.id}: patient and visit number are immutable")

    n = len(stored.messages)
    if len(updated.messages) < n:
        raise PersistenceError(f"Conversation {stored.id}: messages cannot be removed")
    for before, after in zip(stored.messages, updated.messages[:n]):
        if before.id != after.id or before.content != after.content or before.role != after.role:
            raise PersistenceError(f"Conversation {stored.id}: messages are append-only")

    if updated.status != stored.status and not can_transition(stored.status, updated.status):
        raise PersistenceError(
            f"Conversation {stored.id}: status cannot move "
            f"{stored.status.value} → {updated.status.value}"
        )
    if stored.clinical_summary is not None and updated.clinical_summary != stored.clinical_summary:
        raise PersistenceError(f"Conversation {stored.id}: clinical summary is write-once")


class ConversationStore(ABC):
    """Contract every conversation backend implements."""

    @abstractmethod
    def create(
        self,
        patient_id: str,
        opening: str | None = None,
        idempotency_key: str | None = None,
    ) -> tuple[Conversation, int]:
        """
        Create the patient's next visit.  Returns (conversation, generation).

        When ``opening`` is given the visit is written already holding that
        patient message, so a visit number is never consumed by an empty log.
        """

    @abstractmethod
    def load(self, conversation_id: str) -> tuple[Conversation, int]:
        """Raises NotFoundError for unknown ids."""

    @abstractmethod
    def save(self, conversation: Conversation, generation: int) -> int:
        """Persist the whole conversation atomically.  Returns the new generation."""

    @abstractmethod
    def get_by_visit(self, patient_id: str, visit_number: int) -> Conversation | None:
        ...

    @abstractmethod
    def list_for_patient(self, patient_id: str) -> list[Conversation]:
        """All of a patient's conversations, ordered by visit number."""

    @abstractmethod
    def list_by_status(self, status: ConversationStatus) -> list[Conversation]:
        ...

    def count_for_patient(self, patient_id: str) -> int:
        return len(self.list_for_patient(patient_id))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  In-memory backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class InMemoryConversationStore(ConversationStore):
    """Thread-safe store that hands out deep copies, never live objects."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, tuple[Conversation, int]] = {}
        self._by_patient: dict[str, dict[int, str]] = {}

    def create(
        self,
        patient_id: str,
        opening: str | None = None,
        idempotency_key: str | None = None,
    ) -> tuple[Conversation, int]:
        with self._lock:
            visits = self._by_patient.setdefault(patient_id, {})
            visit_number = len(visits) + 1
            conversation = Conversation.create_new(patient_id, visit_number, opening, idempotency_key)
            visits[visit_number] = conversation.id
            self._records[conversation.id] = (conversation.model_copy(deep=True), 1)
        logger.info(
            "Created conversation %s (visit %d) for patient %s",
            conversation.id, visit_number, patient_id,
        )
        return conversation, 1

    def load(self, conversation_id: str) -> tuple[Conversation, int]:
        with self._lock:
            record = self._records.get(conversation_id)
            if record is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            conversation, generation = record
            return conversation.model_copy(deep=True), generation

    def save(self, conversation: Conversation, generation: int) -> int:
        with self._lock:
            record = self._records.get(conversation.id)
            if record is None:
                raise NotFoundError(f"Conversation {conversation.id} not found")
            stored, current_generation = record
            if current_generation != generation:
                raise ConversationConflictError(
                    f"Conversation {conversation.id} was modified by another writer"
                )
            validate_update(stored, conversation)
            conversation.touch()
            new_generation = current_generation + 1
            self._records[conversation.id] = (conversation.model_copy(deep=True), new_generation)
            return new_generation

    def get_by_visit(self, patient_id: str, visit_number: int) -> Conversation | None:
        with self._lock:
            conversation_id = self._by_patient.get(patient_id, {}).get(visit_number)
            if conversation_id is None:
                return None
            return self._records[conversation_id][0].model_copy(deep=True)

    def list_for_patient(self, patient_id: str) -> list[Conversation]:
        with self._lock:
            visits = self._by_patient.get(patient_id, {})
            return [
                self._records[visits[n]][0].model_copy(deep=True)
                for n in sorted(visits)
            ]

    def list_by_status(self, status: ConversationStatus) -> list[Conversation]:
        with self._lock:
            return [
                conversation.model_copy(deep=True)
                for conversation, _ in self._records.values()
                if conversation.status == status
            ]

    def count_for_patient(self, patient_id: str) -> int:
        with self._lock:
            return len(self._by_patient.get(patient_id, {}))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  GCS backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class GCSConversationStore(ConversationStore):
    """
    Persists conversations to GCS via GCSBucketManager.

    Generation-match preconditions give both optimistic locking on save
    and create-if-absent on create (``if_generation_match=0``), which is
    what keeps per-patient visit numbers gapless across processes.
    """

    PREFIX = "conversations"
    INDEX_PREFIX = "conversation_index"

    # HTTP timeout for individual GCS operations (seconds)
    GCS_TIMEOUT = 30

    def __init__(self, gcs_bucket_manager) -> None:
        self._gcs = gcs_bucket_manager

    def _patient_folder(self, patient_id: str) -> str:
        return f"{self.PREFIX}/patient_{patient_id}"

    def _blob_path(self, patient_id: str, visit_number: int) -> str:
        return f"{self._patient_folder(patient_id)}/visit_{visit_number:04d}.json"

    def _index_path(self, conversation_id: str) -> str:
        return f"{self.INDEX_PREFIX}/{conversation_id}.json"

    def _read(self, path: str) -> tuple[Conversation, int]:
        blob = self._gcs.bucket.blob(path)
        content = blob.download_as_text(timeout=self.GCS_TIMEOUT)
        conversation = Conversation.model_validate(json.loads(content))
        return conversation, blob.generation or 0

    def create(
        self,
        patient_id: str,
        opening: str | None = None,
        idempotency_key: str | None = None,
    ) -> tuple[Conversation, int]:
        try:
            self._gcs._ensure_initialized()
            visit_number = self.count_for_patient(patient_id) + 1
            conversation = Conversation.create_new(patient_id, visit_number, opening, idempotency_key)

            # A visit blob must never exist without its index
            index = self._gcs.bucket.blob(self._index_path(conversation.id))
            index.upload_from_string(
                json.dumps({"patient_id": patient_id, "visit_number": visit_number}),
                content_type="application/json",
                timeout=self.GCS_TIMEOUT,
            )

            blob = self._gcs.bucket.blob(self._blob_path(patient_id, visit_number))
            blob.upload_from_string(
                conversation.model_dump_json(indent=2),
                content_type="application/json",
                if_generation_match=0,
                timeout=self.GCS_TIMEOUT,
            )
            blob.reload(timeout=self.GCS_TIMEOUT)
            generation = blob.generation or 0
        except PreconditionFailed as e:
            raise ConversationConflictError(
                f"Visit {visit_number} for patient {patient_id} already exists"
            ) from e
        except Exception as e:
            raise PersistenceError(f"Could not create conversation for {patient_id}: {e}") from e

        logger.info(
            "Created conversation %s (visit %d) for patient %s",
            conversation.id, visit_number, patient_id,
        )
        return conversation, generation

    def load(self, conversation_id: str) -> tuple[Conversation, int]:
        try:
            self._gcs._ensure_initialized()
            index_blob = self._gcs.bucket.blob(self._index_path(conversation_id))
            index = json.loads(index_blob.download_as_text(timeout=self.GCS_TIMEOUT))
            return self._read(self._blob_path(index["patient_id"], index["visit_number"]))
        except NotFound as e:
            raise NotFoundError(f"Conversation {conversation_id} not found") from e
        except Exception as e:
            raise PersistenceError(f"Could not load conversation {conversation_id}: {e}") from e

    def save(self, conversation: Conversation, generation: int) -> int:
        path = self._blob_path(conversation.patient_id, conversation.visit_number)
        try:
            self._gcs._ensure_initialized()
            stored, current_generation = self._read(path)
        except NotFound as e:
            raise NotFoundError(f"Conversation {conversation.id} not found") from e
        except Exception as e:
            raise PersistenceError(f"Could not read conversation {conversation.id}: {e}") from e

        if current_generation != generation:
            raise ConversationConflictError(
                f"Conversation {conversation.id} was modified by another writer"
            )
        validate_update(stored, conversation)
        conversation.touch()

        try:
            blob = self._gcs.bucket.blob(path)
            blob.upload_from_string(
                conversation.model_dump_json(indent=2),
                content_type="application/json",
                if_generation_match=generation,
                timeout=self.GCS_TIMEOUT,
            )
            blob.reload(timeout=self.GCS_TIMEOUT)
            return blob.generation or 0
        except PreconditionFailed as e:
            raise ConversationConflictError(
                f"Conversation {conversation.id} was modified by another writer"
            ) from e
        except Exception as e:
            raise PersistenceError(f"Could not save conversation {conversation.id}: {e}") from e

    def get_by_visit(self, patient_id: str, visit_number: int) -> Conversation | None:
        try:
            self._gcs._ensure_initialized()
            conversation, _ = self._read(self._blob_path(patient_id, visit_number))
            return conversation
        except NotFound:
            return None
        except Exception as e:
            raise PersistenceError(
                f"Could not load visit {visit_number} for patient {patient_id}: {e}"
            ) from e

    def _visit_files(self, patient_id: str) -> list[str]:
        try:
            files = self._gcs.list_files(self._patient_folder(patient_id))
        except Exception as e:
            raise PersistenceError(f"Could not list conversations for {patient_id}: {e}") from e
        return sorted(f for f in files if f.startswith("visit_") and f.endswith(".json"))

    def count_for_patient(self, patient_id: str) -> int:
        return len(self._visit_files(patient_id))

    def list_for_patient(self, patient_id: str) -> list[Conversation]:
        folder = self._patient_folder(patient_id)
        conversations = []
        for name in self._visit_files(patient_id):
            try:
                conversation, _ = self._read(f"{folder}/{name}")
            except Exception as e:
                raise PersistenceError(f"Could not read {folder}/{name}: {e}") from e
            conversations.append(conversation)
        return sorted(conversations, key=lambda c: c.visit_number)

    def list_patient_ids(self) -> list[str]:
        try:
            files = self._gcs.list_files(self.PREFIX)
        except Exception as e:
            raise PersistenceError(f"Could not list patients: {e}") from e
        # Folder names look like "patient_PT-1234/"
        return [
            f[len("patient_"):-1]
            for f in files
            if f.startswith("patient_") and f.endswith("/")
        ]

    def list_by_status(self, status: ConversationStatus) -> list[Conversation]:
        matches = []
        for patient_id in self.list_patient_ids():
            matches.extend(c for c in self.list_for_patient(patient_id) if c.status == status)
        return matches
