"""
Token counting.

Two tiers: a cheap character-based estimate used as a pre-filter, and a
precise tiktoken count used as the authoritative measurement.
"""

from __future__ import annotations

import math
from typing import Optional

import tiktoken

CHARS_PER_TOKEN = 4
FALLBACK_ENCODING = "o200k_base"


def estimate_tokens(text: str) -> int:
    """Approximate token count: ceil(len / CHARS_PER_TOKEN)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TokenCounter:
    """Precise token counter backed by tiktoken."""

    def __init__(self, model: str, encoding_name: Optional[str] = None):
        self.model = model
        if encoding_name:
            self._encoding = tiktoken.get_encoding(encoding_name)
        else:
            try:
                self._encoding = tiktoken.encoding_for_model(model)
            except KeyError:
                # Unknown model names fall back to the current OpenAI encoding
                self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text))

    def count_messages(self, messages: list[dict[str, str]]) -> int:
        """
        Count tokens in chat message format (role + content + formatting overhead).

        Args:
            messages: List of message dictionaries with 'role' and 'content'

        Returns:
            Total token count including ~4 tokens of framing per message
        """
        total = 0
        for message in messages:
            total += 4 + self.count(message.get("content", ""))
        return total
