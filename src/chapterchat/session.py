"""
Chat session management.

ChatSession is the one object that owns a conversation about a video: the
generation session, the chapter selection, the token budget, the streaming
controller and the message log. Build it once and hand it to whatever drives
the UI; observers subscribe to its events instead of reading shared state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from .budget import ContextBudgetPlanner, DEFAULT_MARGIN_FACTOR, TokenBudget
from .chapter_range import format_chapter_range, parse_chapter_range
from .prompts import SESSION_INIT_FAILED, STREAMING_ERROR
from .status import SESSION_TRANSITIONS, SessionStatus, StateMachine
from .streaming import (
    DEFAULT_THROTTLE_MS,
    GenerationSession,
    StreamEvent,
    StreamEventKind,
    StreamingResponseController,
    StreamStatus,
)
from .system_prompt import build_system_prompt
from .transcript import VideoContext
from .validator import ValidationResult, validate_selection

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], Awaitable[GenerationSession]]


class Sender(str, Enum):
    USER = "user"
    BOT = "bot"


@dataclass
class Message:
    sender: Sender
    text: str
    is_error: bool = False


class SessionEventKind(str, Enum):
    READY = "ready"
    FAILED = "failed"
    SELECTION_CHANGED = "selection_changed"
    STREAM = "stream"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    stream: Optional[StreamEvent] = None
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None


SessionListener = Callable[[SessionEvent], None]


class ChatSession:
    """Owns one conversation about one video."""

    def __init__(
        self,
        context: VideoContext,
        session_factory: SessionFactory,
        margin_factor: float = DEFAULT_MARGIN_FACTOR,
        throttle_ms: float = DEFAULT_THROTTLE_MS,
    ):
        self.context = context
        self.margin_factor = margin_factor
        self.messages: List[Message] = []
        self.selected_chapters: List[int] = list(range(len(context.chapters)))
        self.range_input = format_chapter_range(self.selected_chapters)
        self.budget: Optional[ContextBudgetPlanner] = None

        self._session_factory = session_factory
        self._generation: Optional[GenerationSession] = None
        self._status = StateMachine(SessionStatus.UNINITIALIZED, SESSION_TRANSITIONS)
        self._listeners: List[SessionListener] = []
        self._init_generation = 0
        self._validation_generation = 0
        self._bot_message: Optional[Message] = None

        self.controller = StreamingResponseController(
            session_provider=self._active_session,
            budget_provider=lambda: self.budget,
            throttle_ms=throttle_ms,
        )
        self.controller.subscribe(self._on_stream_event)

    # ----------------------------
    # State
    # ----------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status.state

    @property
    def is_ready(self) -> bool:
        return self.status is SessionStatus.READY

    @property
    def is_streaming(self) -> bool:
        return self.controller.status is StreamStatus.STREAMING

    @property
    def threshold(self) -> float:
        if self.budget is not None:
            return self.budget.threshold
        return math.inf

    def token_snapshot(self) -> Optional[TokenBudget]:
        return self.budget.snapshot if self.budget is not None else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _active_session(self) -> Optional[GenerationSession]:
        return self._generation if self.is_ready else None

    # ----------------------------
    # Lifecycle
    # ----------------------------

    async def start(self, selected: Optional[Sequence[int]] = None) -> bool:
        """
        (Re)create the generation session and load the transcript into it.

        A start superseded by a newer start/reset/close releases its own
        session and returns False.
        """
        if self.status is SessionStatus.CLOSED:
            return False

        self.controller.cancel()
        await self.controller.wait()
        await self._release()

        self._init_generation += 1
        generation = self._init_generation
        self._status.transition(SessionStatus.INITIALIZING)

        session: Optional[GenerationSession] = None
        try:
            session = await self._session_factory()
            if generation != self._init_generation:
                stale, session = session, None
                await stale.destroy()
                return False

            budget = ContextBudgetPlanner(session.input_quota, self.margin_factor)
            result = build_system_prompt(self.context, budget.threshold, selected)
            session.append_system(result.system_prompt)
            system_tokens = await session.measure_input_usage(result.system_prompt)
            if generation != self._init_generation:
                stale, session = session, None
                await stale.destroy()
                return False
        except Exception as e:
            if session is not None:
                await session.destroy()
            if generation != self._init_generation:
                return False
            logger.error("Session initialization failed", error=str(e))
            error = f"{SESSION_INIT_FAILED}: {e}"
            self.messages = [Message(sender=Sender.BOT, text=error, is_error=True)]
            self._status.transition(SessionStatus.FAILED)
            self._emit(SessionEvent(kind=SessionEventKind.FAILED, error=error))
            return False

        if result.was_truncated and self.context.chapters:
            if selected is None or list(result.included_chapter_indices) != sorted(selected):
                logger.info(
                    "Updating chapter selection due to truncation",
                    included=len(result.included_chapter_indices),
                    total=len(self.context.chapters),
                )
                self._set_selection(result.included_chapter_indices)
        elif selected is not None:
            self._set_selection(result.included_chapter_indices)

        self._generation = session
        self.budget = budget
        budget.set_system_tokens(system_tokens)
        self.messages = []
        self._status.transition(SessionStatus.READY)
        logger.info(
            "Session ready",
            system_tokens=system_tokens,
            quota=budget.quota,
            chapters=len(self.selected_chapters),
        )
        self._emit(SessionEvent(kind=SessionEventKind.READY))
        return True

    async def reset(self) -> bool:
        """Restart the conversation with the current chapter selection."""
        selected = self.selected_chapters if self.context.chapters else None
        return await self.start(selected)

    async def close(self) -> None:
        if self.status is SessionStatus.CLOSED:
            return
        self._init_generation += 1
        self.controller.cancel()
        await self.controller.wait()
        await self._release()
        self._status.transition(SessionStatus.CLOSED)
        self._emit(SessionEvent(kind=SessionEventKind.CLOSED))

    async def _release(self) -> None:
        session, self._generation = self._generation, None
        if session is not None:
            await session.destroy()

    # ----------------------------
    # Turns
    # ----------------------------

    def send_turn(self, text: str) -> bool:
        if self.is_streaming or not self.is_ready:
            return False
        if not self.controller.send(text):
            return False
        self.messages.append(Message(sender=Sender.USER, text=text))
        self._bot_message = None
        return True

    def cancel_turn(self) -> None:
        self.controller.cancel()

    async def wait_for_turn(self) -> None:
        await self.controller.wait()

    def _on_stream_event(self, event: StreamEvent) -> None:
        if event.kind is StreamEventKind.FAILED:
            self.messages.append(
                Message(sender=Sender.BOT, text=f"{STREAMING_ERROR}: {event.error}", is_error=True)
            )
        elif self._bot_message is not None:
            self._bot_message.text = event.text
        elif event.text or event.kind is StreamEventKind.COMPLETED:
            self._bot_message = Message(sender=Sender.BOT, text=event.text)
            self.messages.append(self._bot_message)

        if event.kind is not StreamEventKind.UPDATE:
            self._bot_message = None
        self._emit(SessionEvent(kind=SessionEventKind.STREAM, stream=event))

    # ----------------------------
    # Chapter selection
    # ----------------------------

    def _set_selection(self, indices: Sequence[int]) -> None:
        self.selected_chapters = sorted(set(indices))
        self.range_input = format_chapter_range(self.selected_chapters)

    async def select_chapters(self, requested: Sequence[int]) -> Optional[ValidationResult]:
        """
        Validate and apply a selection. Only the most recent request wins; a
        result that arrives after a newer request was made is dropped and
        None is returned.
        """
        self._validation_generation += 1
        generation = self._validation_generation

        measure = self._generation.measure_input_usage if self._generation is not None else None
        result = await validate_selection(
            requested,
            self.context.segments,
            self.context.chapters,
            self.threshold,
            measure,
        )

        if generation != self._validation_generation:
            logger.debug("Discarding stale validation result", requested=list(requested))
            return None

        if self.context.chapters:
            self._set_selection(result.valid_indices)
        if result.removed_indices:
            logger.info(
                "Chapters removed (context limit)",
                chapters=[i + 1 for i in result.removed_indices],
            )
        self._emit(SessionEvent(kind=SessionEventKind.SELECTION_CHANGED, validation=result))
        return result

    async def apply_range(self, range_value: str) -> Optional[ValidationResult]:
        return await self.select_chapters(parse_chapter_range(range_value, len(self.context.chapters)))

    async def toggle_chapter(self, index: int) -> Optional[ValidationResult]:
        if index in self.selected_chapters:
            requested = [i for i in self.selected_chapters if i != index]
        else:
            requested = self.selected_chapters + [index]
        return await self.select_chapters(requested)

    async def select_all(self) -> Optional[ValidationResult]:
        return await self.select_chapters(list(range(len(self.context.chapters))))

    async def deselect_all(self) -> Optional[ValidationResult]:
        return await self.select_chapters([])
