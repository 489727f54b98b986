"""
Intake Setup: initializes and wires together all intake components.

Called once during app startup.  Tests pass their own store and
reasoning doubles; production builds them from settings.
"""

from __future__ import annotations

import logging

from medichat import settings
from medichat.intake.channels import DispatcherRegistry, HandoffNotifier
from medichat.intake.clinician import ClinicianReviewService
from medichat.intake.dispatchers.inbox_dispatcher import InboxDispatcher
from medichat.intake.dispatchers.websocket_dispatcher import WebSocketDispatcher
from medichat.intake.orchestrator import TurnOrchestrator
from medichat.intake.queue import TurnQueueManager
from medichat.intake.reasoning import GeminiReasoningClient, ReasoningService
from medichat.intake.store import (
    ConversationStore,
    GCSConversationStore,
    InMemoryConversationStore,
)
from medichat.intake.summary import SummarySynthesizer

logger = logging.getLogger("intake.setup")

# Module-level singletons (set during initialize)
_orchestrator: TurnOrchestrator | None = None
_clinician_service: ClinicianReviewService | None = None
_queue_manager: TurnQueueManager | None = None
_notifier: HandoffNotifier | None = None
_inbox: InboxDispatcher | None = None
_websocket_dispatcher: WebSocketDispatcher | None = None


def build_store() -> ConversationStore:
    if settings.CONVERSATION_STORE == "gcs":
        from medichat.infrastructure.gcs import GCSBucketManager

        gcs = GCSBucketManager(bucket_name=settings.GCS_BUCKET_NAME)
        # Eager init to avoid a cold start on the first turn
        gcs._ensure_initialized()
        logger.info("Using GCS conversation store (bucket=%s)", settings.GCS_BUCKET_NAME)
        return GCSConversationStore(gcs)
    logger.info("Using in-memory conversation store")
    return InMemoryConversationStore()


async def initialize_intake(
    store: ConversationStore | None = None,
    reasoning: ReasoningService | None = None,
    summary_reasoning: ReasoningService | None = None,
) -> TurnOrchestrator:
    """Wire the intake engine and start its queue.  Returns the orchestrator."""
    global _orchestrator, _clinician_service, _queue_manager
    global _notifier, _inbox, _websocket_dispatcher

    logger.info("Initializing MediChat intake engine...")

    store = store or build_store()
    if reasoning is None:
        reasoning = GeminiReasoningClient()
        summary_reasoning = summary_reasoning or GeminiReasoningClient(
            model=settings.SUMMARY_MODEL,
            max_output_tokens=settings.SUMMARY_MAX_OUTPUT_TOKENS,
            temperature=settings.SUMMARY_TEMPERATURE,
        )
    summary_reasoning = summary_reasoning or reasoning

    registry = DispatcherRegistry()
    _websocket_dispatcher = WebSocketDispatcher()
    _inbox = InboxDispatcher()
    registry.register(_websocket_dispatcher)
    registry.register(_inbox)
    _notifier = HandoffNotifier(registry)

    _queue_manager = TurnQueueManager()
    await _queue_manager.start()

    _orchestrator = TurnOrchestrator(
        store=store,
        reasoning=reasoning,
        queue=_queue_manager,
        notifier=_notifier,
        summarizer=SummarySynthesizer(summary_reasoning),
    )
    _clinician_service = ClinicianReviewService(
        store=store,
        queue=_queue_manager,
        notifier=_notifier,
    )

    logger.info("Intake engine initialized: channels=%s", registry.registered_channels)
    return _orchestrator


async def shutdown_intake() -> None:
    """Drain notifications and stop the queue workers."""
    global _orchestrator, _clinician_service, _queue_manager
    if _notifier:
        await _notifier.flush()
    if _queue_manager:
        await _queue_manager.stop()
    _orchestrator = None
    _clinician_service = None
    _queue_manager = None
    logger.info("Intake engine shutdown complete")


def get_orchestrator() -> TurnOrchestrator | None:
    return _orchestrator


def get_clinician_service() -> ClinicianReviewService | None:
    return _clinician_service


def get_inbox() -> InboxDispatcher | None:
    return _inbox


def get_websocket_dispatcher() -> WebSocketDispatcher | None:
    return _websocket_dispatcher
