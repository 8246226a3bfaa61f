"""Builds the system prompt that carries the transcript into the model's context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from .prompts import NO_CHAPTERS_SYSTEM_PROMPT, VIDEO_SYSTEM_PROMPT_TEMPLATE
from .tokens import CHARS_PER_TOKEN, estimate_tokens
from .transcript import (
    VideoContext,
    assemble_transcript,
    chapters_covered_by,
    filter_segments_by_chapters,
    truncate_at_boundary,
)

logger = structlog.get_logger(__name__)


@dataclass
class SystemPromptResult:
    system_prompt: str
    was_truncated: bool = False
    included_chapter_indices: List[int] = field(default_factory=list)


def build_system_prompt(
    context: VideoContext,
    threshold: int,
    selected: Optional[Sequence[int]] = None,
) -> SystemPromptResult:
    """
    Create the system prompt, truncating the transcript at a segment boundary
    when its estimate exceeds the threshold.

    Args:
        context: Video context with transcript and chapters
        threshold: Token budget for the transcript
        selected: Chapter indices to include; None means the whole video

    Returns:
        SystemPromptResult with the prompt and the chapters it actually covers
    """
    if selected is not None and len(selected) == 0:
        return SystemPromptResult(system_prompt=NO_CHAPTERS_SYSTEM_PROMPT)

    chapters = context.chapters
    segments = list(context.segments)
    if selected is not None and chapters:
        segments = filter_segments_by_chapters(segments, chapters, selected)

    transcript = assemble_transcript(segments)
    was_truncated = False

    if estimate_tokens(transcript) > threshold:
        truncation = truncate_at_boundary(segments, threshold * CHARS_PER_TOKEN)
        was_truncated = truncation.was_truncated
        logger.info(
            "Transcript truncated at segment boundary",
            chars_before=len(transcript),
            chars_after=len(truncation.text),
            segments_before=len(segments),
            segments_after=len(truncation.included),
        )
        transcript = truncation.text

        if selected is not None:
            included = [
                idx
                for idx in selected
                if 0 <= idx < len(chapters)
                and chapters[idx].start_seconds < truncation.end_time_seconds
            ]
        else:
            included = chapters_covered_by(chapters, truncation.end_time_seconds)
    elif selected is not None:
        included = [idx for idx in selected if 0 <= idx < len(chapters)]
    else:
        included = list(range(len(chapters)))

    prompt = VIDEO_SYSTEM_PROMPT_TEMPLATE.format(title=context.title, transcript=transcript)
    return SystemPromptResult(
        system_prompt=prompt,
        was_truncated=was_truncated,
        included_chapter_indices=sorted(included),
    )
