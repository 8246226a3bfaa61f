"""
OpenAI-backed generation session.

Keeps the chat history for one conversation, streams completions as
incremental deltas, and reports token usage from the API's usage records.
"""

from __future__ import annotations

import asyncio
import os
from typing import AsyncIterator, Dict, List, Optional

import structlog
from openai import AsyncOpenAI
from openai import OpenAIError

from .status import ModelAvailability
from .streaming import ChunkMode, GenerationError
from .tokens import TokenCounter

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "gpt-5-nano"
DEFAULT_CONTEXT_QUOTA = 400_000


def check_availability(api_key: Optional[str] = None) -> ModelAvailability:
    """Hosted models are usable as soon as an API key is configured."""
    api_key = api_key or os.getenv("OPENAI_API_KEY")
    return ModelAvailability.AVAILABLE if api_key else ModelAvailability.UNAVAILABLE


class OpenAIChatSession:
    """One chat conversation against the OpenAI chat completions API."""

    chunk_mode = ChunkMode.INCREMENTAL

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        input_quota: int = DEFAULT_CONTEXT_QUOTA,
        client: Optional[AsyncOpenAI] = None,
        counter: Optional[TokenCounter] = None,
    ):
        """
        Initialize the session.

        Args:
            api_key: OpenAI API key (optional, uses env var if not provided)
            model: Chat model name
            input_quota: Maximum input tokens the model accepts
            client: Pre-built client (mainly for tests)
            counter: Token counter for precise measurement
        """
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                    "or pass api_key parameter."
                )
            client = AsyncOpenAI(api_key=api_key)
        self.client = client
        self.model = model
        self.input_quota = input_quota
        self.counter = counter or TokenCounter(model)
        self.messages: List[Dict[str, str]] = []
        self._system_tokens = 0
        self._last_usage_total: Optional[int] = None
        self._destroyed = False

    def append_system(self, prompt: str) -> None:
        self.messages.append({"role": "system", "content": prompt})
        self._system_tokens = self.counter.count_messages(
            [m for m in self.messages if m["role"] == "system"]
        )

    async def measure_input_usage(self, text: str) -> int:
        # tiktoken is CPU-bound; keep large transcripts off the event loop
        return await asyncio.to_thread(self.counter.count, text)

    async def prompt_streaming(self, text: str, cancel_event: asyncio.Event) -> AsyncIterator[str]:
        """
        Send a user message and yield response deltas as they arrive.

        The partial response is kept in history even when the turn is cancelled.
        """
        if self._destroyed:
            raise GenerationError("Session has been destroyed")

        self.messages.append({"role": "user", "content": text})
        self._last_usage_total = None
        parts: List[str] = []

        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self.messages,
                stream=True,
                stream_options={"include_usage": True},
            )
        except OpenAIError as e:
            raise GenerationError(f"API error: {e}") from e

        try:
            async for chunk in stream:
                if cancel_event.is_set():
                    break
                if chunk.usage is not None:
                    self._last_usage_total = chunk.usage.total_tokens
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    parts.append(delta)
                    yield delta
        except OpenAIError as e:
            raise GenerationError(f"Failed to generate response: {e}") from e
        finally:
            await stream.close()
            self.messages.append({"role": "assistant", "content": "".join(parts)})

    def conversation_tokens_used(self) -> int:
        """Tokens used by everything except the system prompt."""
        if self._last_usage_total is not None:
            return max(0, self._last_usage_total - self._system_tokens)
        # No usage record (e.g. cancelled turn): count the history locally
        return self.counter.count_messages(
            [m for m in self.messages if m["role"] != "system"]
        )

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        await self.client.close()
        logger.debug("Generation session destroyed", model=self.model)
