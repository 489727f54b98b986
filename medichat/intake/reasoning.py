"""
Reasoning client: the language-model side of every intake turn.

``GeminiReasoningClient`` wraps google-genai with the same retry and
exponential backoff the rest of the platform uses, plus a hard timeout
per attempt.  Unlike a best-effort helper it never returns ``None``:
exhaustion surfaces as ``UpstreamServiceError`` so the orchestrator can
abort the turn cleanly.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from google import genai
from google.genai import types

from medichat import settings
from medichat.intake.conversation import Message, MessageRole
from medichat.intake.errors import UpstreamServiceError

logger = logging.getLogger("intake.reasoning")

_ROLE_MAP = {
    MessageRole.PATIENT: "user",
    MessageRole.ASSISTANT: "model",
}


class ReasoningService(ABC):
    """Contract the orchestrator and summary synthesizer depend on."""

    @abstractmethod
    async def complete(
        self,
        instructions: str,
        history: list[Message],
        new_message: str,
    ) -> str:
        """Next assistant reply for ``new_message`` given the prior dialogue."""

    @abstractmethod
    async def complete_prompt(self, prompt: str) -> str:
        """Single-shot completion with no dialogue history."""


def to_contents(history: list[Message], new_message: str) -> list[types.Content]:
    contents = [
        types.Content(role=_ROLE_MAP[m.role], parts=[types.Part(text=m.content)])
        for m in history
    ]
    contents.append(types.Content(role="user", parts=[types.Part(text=new_message)]))
    return contents


class GeminiReasoningClient(ReasoningService):
    def __init__(
        self,
        client: Any = None,
        model: str = settings.INTAKE_MODEL,
        max_output_tokens: int = settings.INTAKE_MAX_OUTPUT_TOKENS,
        temperature: float = settings.INTAKE_TEMPERATURE,
        timeout_seconds: float = settings.REASONING_TIMEOUT_SECONDS,
        max_retries: int = settings.REASONING_MAX_RETRIES,
        base_backoff: float = 0.5,
    ) -> None:
        self._client = client  # Lazy initialization when None
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.base_backoff = base_backoff

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(api_key=settings.GOOGLE_API_KEY)
        return self._client

    async def complete(
        self,
        instructions: str,
        history: list[Message],
        new_message: str,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=instructions,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        return await self._generate(to_contents(history, new_message), config)

    async def complete_prompt(self, prompt: str) -> str:
        config = types.GenerateContentConfig(
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        return await self._generate(prompt, config)

    async def _generate(self, contents: Any, config: types.GenerateContentConfig) -> str:
        """Call the model with per-attempt timeout, retry and exponential backoff."""
        attempts = self.max_retries + 1
        last_error = "no attempts made"

        for attempt in range(attempts):
            try:
                response = await asyncio.wait_for(
                    self.client.aio.models.generate_content(
                        model=self.model,
                        contents=contents,
                        config=config,
                    ),
                    timeout=self.timeout_seconds,
                )
                text = response.text
                if isinstance(text, str) and text.strip():
                    return text.strip()
                last_error = "empty response"
                logger.warning("Model returned empty response (attempt %d/%d)", attempt + 1, attempts)
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.timeout_seconds}s"
                logger.warning("Model call timed out (attempt %d/%d)", attempt + 1, attempts)
            except Exception as exc:
                last_error = str(exc)
                logger.warning("Model call failed (attempt %d/%d): %s", attempt + 1, attempts, exc)

            if attempt < attempts - 1:
                await asyncio.sleep(self.base_backoff * (2 ** attempt))

        logger.error("Model call exhausted all %d attempts: %s", attempts, last_error)
        raise UpstreamServiceError(f"Reasoning service unavailable: {last_error}")
