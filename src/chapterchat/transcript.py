"""
Transcript assembly (segment-boundary aware).

Segments are timed caption lines, sorted by start time. Their texts are joined
with single spaces into the transcript handed to the model.

Chapters split the video into ranges [start_i, start_{i+1}), the last one
running to the end of the video.

All truncation happens on segment boundaries so sentences are never cut.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence


# ----------------------------
# Data structures
# ----------------------------

@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class Chapter:
    title: str
    start_seconds: float


@dataclass
class VideoContext:
    video_id: str
    title: str
    url: str
    channel: str = "Unknown"
    segments: List[TranscriptSegment] = field(default_factory=list)
    chapters: List[Chapter] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class TruncationResult:
    included: List[TranscriptSegment]
    text: str
    was_truncated: bool
    end_time_seconds: float


# ----------------------------
# Utilities
# ----------------------------

def format_ts(seconds: float) -> str:
    seconds = max(0, int(seconds))
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:02d}:{m:02d}:{s:02d}"


def chapter_time_range(chapters: Sequence[Chapter], index: int) -> tuple[float, float]:
    """Return the [start, end) range of a chapter; the last chapter is open-ended."""
    start = chapters[index].start_seconds
    end = chapters[index + 1].start_seconds if index + 1 < len(chapters) else math.inf
    return start, end


# ----------------------------
# Assembly and truncation
# ----------------------------

def assemble_transcript(segments: Sequence[TranscriptSegment]) -> str:
    """Join segment texts with single spaces, preserving order."""
    if not segments:
        return ""
    return " ".join(seg.text for seg in segments)


def truncate_at_boundary(segments: Sequence[TranscriptSegment], max_chars: int) -> TruncationResult:
    """
    Keep leading segments while the running length stays within max_chars.

    Each segment costs its length plus one separator. At least one segment is
    always kept when the input is non-empty, even if it alone exceeds the limit.

    Args:
        segments: Ordered transcript segments
        max_chars: Character budget

    Returns:
        TruncationResult with the included segments, their text, whether
        anything was dropped, and the end time of the last kept segment
    """
    if not segments:
        return TruncationResult(included=[], text="", was_truncated=False, end_time_seconds=0.0)

    current_length = 0
    last_included = -1

    for i, seg in enumerate(segments):
        seg_length = len(seg.text) + 1
        if current_length + seg_length > max_chars:
            break
        current_length += seg_length
        last_included = i

    if last_included == -1:
        last_included = 0

    included = list(segments[: last_included + 1])
    return TruncationResult(
        included=included,
        text=assemble_transcript(included),
        was_truncated=last_included < len(segments) - 1,
        end_time_seconds=included[-1].end,
    )


def chapters_covered_by(chapters: Sequence[Chapter], end_time_seconds: float) -> List[int]:
    """Indices of chapters starting before end_time_seconds (chapters are sorted)."""
    covered: List[int] = []
    for i, chapter in enumerate(chapters):
        if chapter.start_seconds < end_time_seconds:
            covered.append(i)
        else:
            break
    return covered


def filter_segments_by_chapters(
    segments: Sequence[TranscriptSegment],
    chapters: Sequence[Chapter],
    selected: Sequence[int],
) -> List[TranscriptSegment]:
    """
    Keep segments whose [start, end) interval overlaps any selected chapter.

    Without chapters the whole transcript is returned; an empty selection
    yields nothing.
    """
    if not segments:
        return []
    if not chapters:
        return list(segments)
    if not selected:
        return []

    ranges = [
        chapter_time_range(chapters, idx)
        for idx in sorted(selected)
        if 0 <= idx < len(chapters)
    ]

    return [
        seg
        for seg in segments
        if any(seg.start < end and seg.end > start for start, end in ranges)
    ]
