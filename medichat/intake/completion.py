"""
Completion Detector: decides when intake has gathered enough to hand off.

Two signals must agree:
  1. the patient has answered enough turns for this kind of visit
  2. the assistant's latest reply contains one of the closing phrases

The phrase check is a heuristic on model output, so it is kept here
behind a single class; the turn thresholds are exported so the
instruction frame quotes exactly the same numbers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from medichat.intake.conversation import Conversation, ConversationStatus

logger = logging.getLogger("intake.completion")

FIRST_VISIT_REQUIRED_TURNS = 10
RETURN_VISIT_REQUIRED_TURNS = 7

COMPLETION_PHRASES: tuple[str, ...] = (
    "i have gathered all the information",
    "the doctor will now review",
    "i will now forward this information",
    "thank you for providing all this information",
)


def required_turns_for(visit_number: int) -> int:
    return FIRST_VISIT_REQUIRED_TURNS if visit_number == 1 else RETURN_VISIT_REQUIRED_TURNS


@dataclass(frozen=True)
class CompletionCheck:
    patient_turns: int
    required_turns: int
    signaled: bool
    in_progress: bool

    @property
    def complete(self) -> bool:
        return self.patient_turns >= self.required_turns and self.signaled and self.in_progress


class CompletionDetector:
    """Pure function object; holds nothing but its phrase set."""

    def __init__(self, phrases: tuple[str, ...] | list[str] = COMPLETION_PHRASES) -> None:
        self._phrases = tuple(p.lower() for p in phrases)

    def is_signaled(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(p in lowered for p in self._phrases)

    def evaluate(self, conversation: Conversation, latest_assistant_text: str) -> CompletionCheck:
        return CompletionCheck(
            patient_turns=conversation.patient_turn_count(),
            required_turns=required_turns_for(conversation.visit_number),
            signaled=self.is_signaled(latest_assistant_text),
            in_progress=conversation.status == ConversationStatus.IN_PROGRESS,
        )

    def is_complete(self, conversation: Conversation, latest_assistant_text: str) -> bool:
        check = self.evaluate(conversation, latest_assistant_text)
        if check.signaled and not check.complete:
            logger.info(
                "Closing phrase seen for %s but not complete "
                "(turns=%d/%d, in_progress=%s)",
                conversation.id, check.patient_turns, check.required_turns, check.in_progress,
            )
        return check.complete
