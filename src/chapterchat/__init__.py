"""Chat with a language model about long video transcripts, chapter by chapter."""

from .budget import ContextBudgetPlanner, TokenBudget
from .chapter_range import format_chapter_range, parse_chapter_range
from .session import ChatSession
from .streaming import ChunkMode, StreamingResponseController
from .transcript import Chapter, TranscriptSegment, VideoContext
from .validator import ValidationResult, validate_selection

__version__ = "0.1.0"

__all__ = [
    "Chapter",
    "ChatSession",
    "ChunkMode",
    "ContextBudgetPlanner",
    "StreamingResponseController",
    "TokenBudget",
    "TranscriptSegment",
    "ValidationResult",
    "VideoContext",
    "format_chapter_range",
    "parse_chapter_range",
    "validate_selection",
]
