"""
Shared fixtures and fakes for the MediChat test suite.

The reasoning service and GCS are replaced by in-process doubles so the
tests run fast and offline; the real google-genai and google-cloud
packages are still imported by the code under test.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from google.api_core.exceptions import NotFound, PreconditionFailed

from medichat.intake.channels import DispatcherRegistry, HandoffNotifier
from medichat.intake.dispatchers.inbox_dispatcher import InboxDispatcher
from medichat.intake.errors import UpstreamServiceError
from medichat.intake.orchestrator import TurnOrchestrator
from medichat.intake.queue import TurnQueueManager
from medichat.intake.reasoning import ReasoningService
from medichat.intake.store import InMemoryConversationStore

CLOSING = (
    "Thank you for providing all this information. I have gathered all the "
    "information needed. The doctor will now review your case and respond shortly."
)


class FakeReasoning(ReasoningService):
    """
    Scripted stand-in for the language model.

    ``replies`` are consumed in order; once exhausted, ``default_reply`` is
    used.  ``fail_next`` makes that many upcoming dialogue calls raise
    UpstreamServiceError.  Summary calls use ``summary`` (an Exception
    instance is raised instead).
    """

    def __init__(self, replies=None, default_reply="Could you tell me more about that?",
                 summary="**Chief Complaint:**\nHeadache"):
        self.replies = list(replies or [])
        self.default_reply = default_reply
        self.summary = summary
        self.fail_next = 0
        self.calls: list[dict] = []
        self.prompts: list[str] = []

    async def complete(self, instructions, history, new_message):
        self.calls.append({
            "instructions": instructions,
            "history": list(history),
            "new_message": new_message,
        })
        if self.fail_next > 0:
            self.fail_next -= 1
            raise UpstreamServiceError("model unavailable")
        if self.replies:
            return self.replies.pop(0)
        return self.default_reply

    async def complete_prompt(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary


@pytest.fixture
def fake_reasoning():
    return FakeReasoning()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def inbox():
    return InboxDispatcher()


@pytest.fixture
def notifier(inbox):
    registry = DispatcherRegistry()
    registry.register(inbox)
    return HandoffNotifier(registry)


@pytest_asyncio.fixture
async def orchestrator(store, fake_reasoning, notifier):
    orchestrator = TurnOrchestrator(
        store=store,
        reasoning=fake_reasoning,
        queue=TurnQueueManager(idle_timeout_seconds=5),
        notifier=notifier,
        persistence_timeout=5,
    )
    yield orchestrator
    await notifier.flush()
    await orchestrator.queue.stop()


def make_mock_llm(text: str = "Hello") -> MagicMock:
    """google-genai client double whose generate_content returns ``text``."""
    client = MagicMock()
    response = MagicMock()
    response.text = text
    client.aio.models.generate_content = AsyncMock(return_value=response)
    return client


def make_mock_llm_sequence(outcomes: list) -> MagicMock:
    """Each outcome is either response text or an Exception to raise."""
    client = MagicMock()
    side_effects = []
    for outcome in outcomes:
        if isinstance(outcome, Exception):
            side_effects.append(outcome)
        else:
            response = MagicMock()
            response.text = outcome
            side_effects.append(response)
    client.aio.models.generate_content = AsyncMock(side_effect=side_effects)
    return client


def make_mock_gcs() -> MagicMock:
    """GCSBucketManager double backed by a dict, honouring generation matches."""
    gcs = MagicMock()
    gcs._storage = {}
    gcs._generations = {}
    gcs._ensure_initialized = lambda: None

    class MockBlob:
        def __init__(self, path):
            self.path = path
            self.generation = None

        def download_as_text(self, timeout=None):
            if self.path not in gcs._storage:
                raise NotFound(f"No such object: {self.path}")
            self.generation = gcs._generations[self.path]
            return gcs._storage[self.path]

        def upload_from_string(self, content, content_type=None, if_generation_match=None, timeout=None):
            current = gcs._generations.get(self.path, 0)
            if if_generation_match is not None and current != if_generation_match:
                raise PreconditionFailed("conditionNotMet: generation mismatch")
            gcs._storage[self.path] = content
            gcs._generations[self.path] = current + 1
            self.generation = current + 1

        def reload(self, timeout=None):
            self.generation = gcs._generations.get(self.path)

    mock_bucket = MagicMock()
    mock_bucket.blob = lambda path: MockBlob(path)
    gcs.bucket = mock_bucket

    def list_files(folder_path=None):
        prefix = (folder_path or "").rstrip("/") + "/" if folder_path else ""
        result = set()
        for key in gcs._storage:
            if key.startswith(prefix):
                parts = key[len(prefix):].split("/")
                result.add(parts[0] + "/" if len(parts) > 1 else parts[0])
        return sorted(result)

    gcs.list_files = list_files
    return gcs


async def run_turns(orchestrator, patient_id, count, conversation_id=None, text="answer"):
    """Submit ``count`` turns and return the last TurnResult."""
    result = None
    for i in range(count):
        result = await orchestrator.submit_turn(patient_id, conversation_id, f"{text} {i + 1}")
        conversation_id = result.conversation_id
    return result
