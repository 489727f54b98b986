"""
Summary Synthesizer: the clinician-facing write-up produced at handoff.

Runs once, inside the turn that completes intake.  Failure here never
blocks the handoff: the conversation still moves to the clinician with a
placeholder telling them to read the transcript.
"""

from __future__ import annotations

import logging

from medichat.intake.conversation import Conversation, MessageRole
from medichat.intake.reasoning import ReasoningService

logger = logging.getLogger("intake.summary")

SUMMARY_FAILED_PLACEHOLDER = "Summary generation failed; review transcript manually."

SUMMARY_TEMPLATE = """\
**Chief Complaint:**
[Main reason for the visit]

**History of Present Illness:**
[Onset, duration, severity, location, quality, aggravating and relieving factors]

**Associated Symptoms:**
[Other symptoms mentioned]

**Past Medical History:**
[Relevant past conditions, medications or treatments mentioned]

**Patient's Concerns:**
[Key concerns the patient expressed]

**Files Uploaded:**
[Files listed under UPLOADED FILES below, or "None"]"""


def format_transcript(conversation: Conversation) -> str:
    lines = []
    for m in conversation.messages:
        speaker = "Patient" if m.role == MessageRole.PATIENT else "Assistant"
        lines.append(f"{speaker}: {m.content}")
    return "\n\n".join(lines)


def build_summary_prompt(conversation: Conversation) -> str:
    if conversation.attachments:
        files = "\n".join(
            f"- {a.filename}" + (f" ({a.content_type})" if a.content_type else "")
            for a in conversation.attachments
        )
    else:
        files = "None"

    return f"""\
You are a medical assistant preparing a handoff note for a physician.
Summarize the intake conversation below. Use ONLY information the patient actually
gave; write "Not reported" for any section the conversation does not cover.

CONVERSATION (visit #{conversation.visit_number}):
{format_transcript(conversation)}

UPLOADED FILES:
{files}

Respond in exactly this format:

{SUMMARY_TEMPLATE}

Be professional, concise and clinically relevant."""


class SummarySynthesizer:
    def __init__(self, reasoning: ReasoningService) -> None:
        self._reasoning = reasoning

    async def synthesize(self, conversation: Conversation) -> str:
        try:
            summary = await self._reasoning.complete_prompt(build_summary_prompt(conversation))
        except Exception as exc:
            logger.error(
                "Summary generation failed for %s: %s",
                conversation.id, exc, exc_info=True,
            )
            return SUMMARY_FAILED_PLACEHOLDER

        if not summary or not summary.strip():
            logger.warning("Summary generation returned nothing for %s", conversation.id)
            return SUMMARY_FAILED_PLACEHOLDER
        return summary.strip()
