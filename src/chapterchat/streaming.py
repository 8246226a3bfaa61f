"""
Streaming response handling.

Owns the single in-flight generation turn: consumes the model's chunk stream,
coalesces visible updates to one per throttle interval, supports cooperative
cancellation, and reconciles token usage once the turn settles.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Protocol

import structlog

from .budget import ContextBudgetPlanner

logger = structlog.get_logger(__name__)

DEFAULT_THROTTLE_MS = 16


class GenerationError(Exception):
    """The model failed while producing a response."""


class ChunkMode(str, Enum):
    INCREMENTAL = "incremental"  # each chunk is a delta
    CUMULATIVE = "cumulative"  # each chunk is the full text so far


class GenerationSession(Protocol):
    """Capability interface for one model conversation."""

    input_quota: int
    chunk_mode: ChunkMode

    def append_system(self, prompt: str) -> None: ...

    async def measure_input_usage(self, text: str) -> int: ...

    def prompt_streaming(self, text: str, cancel_event: asyncio.Event) -> AsyncIterator[str]: ...

    def conversation_tokens_used(self) -> int: ...

    async def destroy(self) -> None: ...


class StreamStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"


class StreamEventKind(str, Enum):
    UPDATE = "update"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    text: str
    error: Optional[str] = None


@dataclass
class StreamState:
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    accumulated_text: str = ""
    previous_chunk: str = ""


StreamListener = Callable[[StreamEvent], None]


def compute_delta(previous: str, chunk: str) -> Optional[str]:
    """
    Delta between two cumulative chunks.

    Returns the suffix of chunk beyond previous, or None when chunk does not
    extend previous and must replace the accumulated text instead.
    """
    if chunk.startswith(previous):
        return chunk[len(previous):]
    return None


class StreamingResponseController:
    """Drives one generation turn at a time: Idle -> Streaming -> Idle."""

    def __init__(
        self,
        session_provider: Callable[[], Optional[GenerationSession]],
        budget_provider: Callable[[], Optional[ContextBudgetPlanner]],
        throttle_ms: float = DEFAULT_THROTTLE_MS,
    ):
        self._session_provider = session_provider
        self._budget_provider = budget_provider
        self._interval = throttle_ms / 1000.0
        self._listeners: List[StreamListener] = []
        self._state: Optional[StreamState] = None
        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._last_flush: Optional[float] = None
        self.last_text = ""

    @property
    def status(self) -> StreamStatus:
        return StreamStatus.STREAMING if self._state is not None else StreamStatus.IDLE

    @property
    def accumulated_text(self) -> str:
        return self._state.accumulated_text if self._state is not None else self.last_text

    def subscribe(self, listener: StreamListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def send(self, text: str) -> bool:
        """
        Start a turn. Returns False without touching any state when a turn is
        already streaming, there is no session, or the message is blank.
        """
        if self._state is not None:
            logger.debug("Send rejected, already streaming")
            return False
        session = self._session_provider()
        if session is None or not text.strip():
            logger.debug("Send rejected", has_session=session is not None)
            return False

        state = StreamState()
        self._state = state
        self._last_flush = None
        self._task = asyncio.get_running_loop().create_task(self._run(session, text, state))
        return True

    def cancel(self) -> None:
        if self._state is not None:
            logger.info("Stopping streaming")
            self._state.cancel_event.set()

    async def wait(self) -> None:
        """Wait until the current turn (if any) has settled back to Idle."""
        if self._task is not None:
            await self._task

    # ----------------------------
    # Turn lifecycle
    # ----------------------------

    async def _run(self, session: GenerationSession, text: str, state: StreamState) -> None:
        kind = StreamEventKind.COMPLETED
        error: Optional[str] = None
        try:
            await self._consume(session, text, state)
            if state.cancel_event.is_set():
                kind = StreamEventKind.CANCELLED
        except asyncio.CancelledError:
            kind = StreamEventKind.CANCELLED
            raise
        except Exception as e:
            kind = StreamEventKind.FAILED
            error = str(e) or e.__class__.__name__
            logger.error("Error during streaming", error=error, error_type=e.__class__.__name__)
        finally:
            self._finish(session, state, kind, error)

    async def _consume(self, session: GenerationSession, text: str, state: StreamState) -> None:
        mode = getattr(session, "chunk_mode", ChunkMode.INCREMENTAL)
        iterator = session.prompt_streaming(text, state.cancel_event).__aiter__()
        cancelled = asyncio.ensure_future(state.cancel_event.wait())
        try:
            while not state.cancel_event.is_set():
                pending = asyncio.ensure_future(iterator.__anext__())
                done, _ = await asyncio.wait(
                    {pending, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )
                if pending not in done:
                    pending.cancel()
                    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                        await pending
                    break
                try:
                    chunk = pending.result()
                except StopAsyncIteration:
                    break
                self._apply_chunk(state, chunk, mode)
        finally:
            cancelled.cancel()
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _apply_chunk(self, state: StreamState, chunk: str, mode: ChunkMode) -> None:
        if mode is ChunkMode.CUMULATIVE:
            delta = compute_delta(state.previous_chunk, chunk)
            if delta is None:
                logger.debug("Non-cumulative chunk, replacing buffer", length=len(chunk))
                state.accumulated_text = chunk
            else:
                state.accumulated_text += delta
            state.previous_chunk = chunk
        else:
            state.accumulated_text += chunk
        self._request_flush(state)

    def _finish(
        self,
        session: GenerationSession,
        state: StreamState,
        kind: StreamEventKind,
        error: Optional[str],
    ) -> None:
        self._cancel_timer()
        try:
            self._flush(state)
            if kind is not StreamEventKind.FAILED:
                self._reconcile_usage(session)
        finally:
            self.last_text = state.accumulated_text
            self._state = None
        logger.debug("Stream settled", outcome=kind.value, chars=len(state.accumulated_text))
        self._emit(StreamEvent(kind=kind, text=state.accumulated_text, error=error))

    def _reconcile_usage(self, session: GenerationSession) -> None:
        budget = self._budget_provider()
        if budget is None:
            return
        try:
            tokens = session.conversation_tokens_used()
        except Exception as e:
            logger.warning("Could not read conversation token usage", error=str(e))
            return
        budget.update_conversation(tokens)

    # ----------------------------
    # Throttled flushing
    # ----------------------------

    def _request_flush(self, state: StreamState) -> None:
        if self._timer is not None:
            # the pending flush reads the latest text when it fires
            return
        loop = asyncio.get_running_loop()
        elapsed = None if self._last_flush is None else loop.time() - self._last_flush
        if elapsed is None or elapsed >= self._interval:
            self._flush(state)
        else:
            self._timer = loop.call_later(self._interval - elapsed, self._flush, state)

    def _flush(self, state: StreamState) -> None:
        self._timer = None
        self._last_flush = asyncio.get_running_loop().time()
        self._emit(StreamEvent(kind=StreamEventKind.UPDATE, text=state.accumulated_text))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self, event: StreamEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Stream listener failed", event=event.kind.value)
