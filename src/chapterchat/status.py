"""Closed status enums and the transition tables that govern them."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Generic, Mapping, TypeVar

import structlog

logger = structlog.get_logger(__name__)

S = TypeVar("S", bound=Enum)


class InvalidTransition(Exception):
    """Raised when a status change is not in the transition table."""


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class ModelAvailability(str, Enum):
    UNKNOWN = "unknown"
    UNAVAILABLE = "unavailable"
    DOWNLOADABLE = "downloadable"
    DOWNLOADING = "downloading"
    AVAILABLE = "available"


SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.UNINITIALIZED: frozenset({SessionStatus.INITIALIZING, SessionStatus.CLOSED}),
    SessionStatus.INITIALIZING: frozenset(
        {SessionStatus.INITIALIZING, SessionStatus.READY, SessionStatus.FAILED, SessionStatus.CLOSED}
    ),
    SessionStatus.READY: frozenset({SessionStatus.INITIALIZING, SessionStatus.CLOSED}),
    SessionStatus.FAILED: frozenset({SessionStatus.INITIALIZING, SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset(),
}


class StateMachine(Generic[S]):
    """Holds one status value and only moves it along its transition table."""

    def __init__(self, initial: S, transitions: Mapping[S, FrozenSet[S]]):
        self._state = initial
        self._transitions = transitions

    @property
    def state(self) -> S:
        return self._state

    def can_transition(self, target: S) -> bool:
        return target in self._transitions.get(self._state, frozenset())

    def transition(self, target: S) -> S:
        if not self.can_transition(target):
            raise InvalidTransition(f"{self._state.value} -> {target.value}")
        logger.debug("Status transition", source=self._state.value, target=target.value)
        self._state = target
        return target
