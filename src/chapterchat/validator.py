"""
Chapter selection validation against the context budget.

Given the chapters a user asked for, find the largest selection whose
transcript fits under the token threshold. The cheap estimate filters first;
a precise measurement, when available, confirms. Chapters are evicted from
the end of the video (highest index first) until the rest fits.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from .tokens import estimate_tokens
from .transcript import (
    Chapter,
    TranscriptSegment,
    assemble_transcript,
    filter_segments_by_chapters,
)

logger = structlog.get_logger(__name__)

PreciseMeasure = Callable[[str], Awaitable[int]]


@dataclass(frozen=True)
class ValidationResult:
    valid_indices: List[int] = field(default_factory=list)
    removed_indices: List[int] = field(default_factory=list)
    token_count: int = 0
    was_truncated: bool = False
    # False when the count rests on the character estimate alone
    verified: bool = False

    @property
    def exhausted(self) -> bool:
        """Nothing fits: every requested chapter was evicted."""
        return bool(self.removed_indices) and not self.valid_indices


def normalize_selection(requested: Sequence[int], chapter_count: int) -> List[int]:
    """De-duplicate, sort and bound-check a selection."""
    return sorted({idx for idx in requested if 0 <= idx < chapter_count})


async def validate_selection(
    requested: Sequence[int],
    segments: Sequence[TranscriptSegment],
    chapters: Sequence[Chapter],
    threshold: float,
    precise_measure: Optional[PreciseMeasure] = None,
) -> ValidationResult:
    """
    Validate a chapter selection and auto-truncate it from the end if needed.

    Args:
        requested: Chapter indices the user selected
        segments: Full transcript segments
        chapters: All video chapters, sorted by start time
        threshold: Maximum admissible transcript tokens
        precise_measure: Optional async authoritative token counter

    Returns:
        ValidationResult with the admissible indices and those evicted
    """
    if not requested:
        return ValidationResult()

    if not segments:
        removed = sorted(set(requested))
        return ValidationResult(removed_indices=removed, was_truncated=bool(removed))

    if not chapters:
        token_count = estimate_tokens(assemble_transcript(segments))
        return ValidationResult(token_count=token_count, was_truncated=token_count > threshold)

    selection = normalize_selection(requested, len(chapters))
    if not selection:
        return ValidationResult()
    candidate = list(selection)
    removed: List[int] = []

    while candidate:
        text = assemble_transcript(filter_segments_by_chapters(segments, chapters, candidate))
        estimated = estimate_tokens(text)

        if estimated <= threshold:
            if precise_measure is None:
                return ValidationResult(
                    valid_indices=candidate,
                    removed_indices=removed,
                    token_count=estimated,
                    was_truncated=bool(removed),
                )

            try:
                precise = await precise_measure(text)
            except Exception as e:
                logger.warning(
                    "Token measurement failed, using estimation",
                    error=str(e),
                    chapters=len(candidate),
                    estimated_tokens=estimated,
                )
                return ValidationResult(
                    valid_indices=candidate,
                    removed_indices=removed,
                    token_count=estimated,
                    was_truncated=bool(removed),
                )

            if precise <= threshold:
                return ValidationResult(
                    valid_indices=candidate,
                    removed_indices=removed,
                    token_count=precise,
                    was_truncated=bool(removed),
                    verified=True,
                )
            logger.debug("Precise count exceeds threshold", tokens=precise, threshold=threshold)

        evicted = candidate.pop()
        removed.insert(0, evicted)
        logger.debug("Evicted chapter", index=evicted, remaining=len(candidate))

    logger.info("No chapter selection fits the context budget", requested=len(selection))
    return ValidationResult(removed_indices=selection, was_truncated=True)


async def estimate_max_selectable_chapters(
    segments: Sequence[TranscriptSegment],
    chapters: Sequence[Chapter],
    threshold: float = math.inf,
    precise_measure: Optional[PreciseMeasure] = None,
) -> int:
    """How many chapters survive validation when everything is selected."""
    if not chapters:
        return 0
    result = await validate_selection(
        list(range(len(chapters))), segments, chapters, threshold, precise_measure
    )
    return len(result.valid_indices)
