"""Context window budgeting: admissible threshold and running token usage."""

from __future__ import annotations

import math
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MARGIN_FACTOR = 0.8


@dataclass(frozen=True)
class TokenBudget:
    quota: int
    threshold: int
    system_tokens: int
    conversation_tokens: int
    total_tokens: int
    percentage_used: float


class ContextBudgetPlanner:
    """Tracks how much of the model's input quota the session has consumed."""

    def __init__(self, quota: int, margin_factor: float = DEFAULT_MARGIN_FACTOR):
        if not 0 < margin_factor <= 1:
            raise ValueError(f"margin_factor must be in (0, 1], got {margin_factor}")
        if quota < 0:
            raise ValueError(f"quota must be non-negative, got {quota}")
        self.quota = quota
        self.margin_factor = margin_factor
        self.threshold = math.floor(quota * margin_factor)
        self._snapshot = self.recompute(0, 0)

    @property
    def snapshot(self) -> TokenBudget:
        return self._snapshot

    def recompute(self, system_tokens: int, conversation_tokens: int) -> TokenBudget:
        total = system_tokens + conversation_tokens
        percentage = (total / self.quota) * 100 if self.quota > 0 else 0.0
        return TokenBudget(
            quota=self.quota,
            threshold=self.threshold,
            system_tokens=system_tokens,
            conversation_tokens=conversation_tokens,
            total_tokens=total,
            percentage_used=percentage,
        )

    def set_system_tokens(self, system_tokens: int) -> TokenBudget:
        """Record the measured system prompt size; conversation starts over."""
        self._snapshot = self.recompute(system_tokens, 0)
        return self._snapshot

    def update_conversation(self, conversation_tokens: int) -> TokenBudget:
        """Replace conversation usage with the authoritative value after a turn."""
        previous = self._snapshot.conversation_tokens
        self._snapshot = self.recompute(self._snapshot.system_tokens, conversation_tokens)
        logger.debug(
            "Token budget updated",
            system_tokens=self._snapshot.system_tokens,
            conversation_tokens=conversation_tokens,
            turn_tokens=conversation_tokens - previous,
            percentage_used=round(self._snapshot.percentage_used, 2),
        )
        return self._snapshot
