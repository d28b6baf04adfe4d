"""Chat completion client with OpenAI integration.

Security: Reads API key from settings only, never hardcoded.
Provides a deterministic fallback when no key is present (mock mode).
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from backend.app.config import Settings
from backend.app.errors import CompletionError
from backend.app.models.chat import ChatTurn

logger = logging.getLogger(__name__)


class ChatCompletionClient(Protocol):
    """Protocol for chat completion implementations."""

    def stream_complete(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatTurn],
    ) -> AsyncIterator[str]:
        """Stream completion tokens for a conversation.

        Args:
            system_prompt: Instructions plus retrieved context
            messages: Conversation history ending with the user's message

        Returns:
            Async iterator of text tokens. Closing it aborts the upstream call.

        Raises:
            CompletionError: If the call fails before or during streaming
        """
        ...

    async def complete(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatTurn],
        max_tokens: int = 64,
    ) -> str:
        """Short non-streaming completion (titles, query rewriting)."""
        ...


class DeterministicStubClient:
    """Deterministic stub client for mock mode and tests (no API key required)."""

    def __init__(self, token_delay_seconds: float = 0.0) -> None:
        self._token_delay = token_delay_seconds

    async def stream_complete(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatTurn],
    ) -> AsyncIterator[str]:
        """Stream a canned answer word by word."""
        question = messages[-1].content if messages else ""
        text = (
            "[TEST MODE] This is a simulated response. "
            f"You asked: {question.strip()}\n"
            "Set USE_MOCK_AI=false and configure OPENAI_API_KEY to use the real model."
        )
        for token in re.split(r"(?=[ ,.\n])", text):
            if not token:
                continue
            if self._token_delay:
                await asyncio.sleep(self._token_delay)
            yield token

    async def complete(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatTurn],
        max_tokens: int = 64,
    ) -> str:
        """Echo the last message (first line, truncated)."""
        lines = messages[-1].content.strip().splitlines() if messages else []
        if not lines:
            return ""
        return lines[0][: max_tokens * 4]


class OpenAIClient:
    """OpenAI-backed chat completion client."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", max_tokens: int = 1024):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            model: Model name to use (default: gpt-4o-mini for cost efficiency)
            max_tokens: Upper bound for streamed answers
        """
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens

    async def stream_complete(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatTurn],
    ) -> AsyncIterator[str]:
        """Stream completion tokens from OpenAI. No retries."""
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(system_prompt, messages),
                max_tokens=self.max_tokens,
                temperature=0.3,
                stream=True,
            )
        except OpenAIError as e:
            raise CompletionError(f"Chat completion failed: {e}") from e

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except OpenAIError as e:
            raise CompletionError(f"Chat completion interrupted: {e}") from e
        finally:
            # Propagates caller aborts to the HTTP stream
            await stream.close()

    async def complete(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatTurn],
        max_tokens: int = 64,
    ) -> str:
        """Short completion used for titles and query rewriting."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(system_prompt, messages),
                max_tokens=max_tokens,
                temperature=0.0,
            )
        except OpenAIError as e:
            raise CompletionError(f"Chat completion failed: {e}") from e

        return (response.choices[0].message.content or "").strip()

    def _build_messages(
        self, system_prompt: str, messages: Sequence[ChatTurn]
    ) -> list[dict[str, str]]:
        """Convert history into the OpenAI message format."""
        payload = [{"role": "system", "content": system_prompt}]
        payload.extend({"role": m.role, "content": m.content} for m in messages)
        return payload


def get_llm_client(settings: Settings) -> ChatCompletionClient:
    """Factory function to get appropriate completion client based on config.

    Returns:
        OpenAIClient if API key is configured and mock mode is off,
        DeterministicStubClient otherwise
    """
    api_key = settings.openai_api_key

    if not settings.use_mock_ai and api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for chat completion")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            model=settings.openai_chat_model,
            max_tokens=settings.chat_max_tokens,
        )

    logger.warning("No OpenAI API key configured (or mock mode on), using deterministic stub")
    return DeterministicStubClient()
