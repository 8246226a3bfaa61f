"""Shared test configuration and fixtures for all tests."""

import asyncio
import os
from typing import AsyncIterator, List, Optional

import pytest

from chapterchat.streaming import ChunkMode
from chapterchat.transcript import Chapter, TranscriptSegment, VideoContext

# Never talk to a real API from tests
os.environ["OPENAI_API_KEY"] = "test-key-123"


class FakeGenerationSession:
    """Scripted stand-in for a model session."""

    def __init__(
        self,
        chunks: Optional[List[str]] = None,
        chunk_mode: ChunkMode = ChunkMode.CUMULATIVE,
        input_quota: int = 1000,
        hang_after: bool = False,
        fail_with: Optional[Exception] = None,
        conversation_tokens: int = 42,
    ):
        self.chunks = chunks or []
        self.chunk_mode = chunk_mode
        self.input_quota = input_quota
        self.hang_after = hang_after
        self.fail_with = fail_with
        self.conversation_tokens = conversation_tokens
        self.system_prompts: List[str] = []
        self.prompts: List[str] = []
        self.destroy_calls = 0
        self.chunk_sent = asyncio.Event()

    def append_system(self, prompt: str) -> None:
        self.system_prompts.append(prompt)

    async def measure_input_usage(self, text: str) -> int:
        return len(text) // 4

    async def prompt_streaming(self, text: str, cancel_event: asyncio.Event) -> AsyncIterator[str]:
        self.prompts.append(text)
        for chunk in self.chunks:
            yield chunk
            self.chunk_sent.set()
            await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        if self.hang_after:
            await asyncio.Event().wait()

    def conversation_tokens_used(self) -> int:
        return self.conversation_tokens

    async def destroy(self) -> None:
        self.destroy_calls += 1


@pytest.fixture
def segments() -> List[TranscriptSegment]:
    """Twelve 10-second segments of 40 characters each."""
    return [
        TranscriptSegment(text=f"segment {i:02d} " + "x" * 29, start=i * 10.0, duration=10.0)
        for i in range(12)
    ]


@pytest.fixture
def chapters() -> List[Chapter]:
    """Four chapters of 30 seconds (three segments) each."""
    return [
        Chapter(title="Intro", start_seconds=0.0),
        Chapter(title="Setup", start_seconds=30.0),
        Chapter(title="Deep dive", start_seconds=60.0),
        Chapter(title="Wrap up", start_seconds=90.0),
    ]


@pytest.fixture
def video_context(segments, chapters) -> VideoContext:
    return VideoContext(
        video_id="abc123",
        title="Test Video",
        url="https://www.youtube.com/watch?v=abc123",
        channel="Test Channel",
        segments=segments,
        chapters=chapters,
    )


@pytest.fixture
def fake_session():
    """Factory for scripted generation sessions."""
    return FakeGenerationSession
