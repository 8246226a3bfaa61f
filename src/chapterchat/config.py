"""
Configuration for chapterchat.

Settings come from the environment; a local .env file is loaded first.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

import structlog
from dotenv import load_dotenv

from .budget import DEFAULT_MARGIN_FACTOR
from .llm_client import DEFAULT_CONTEXT_QUOTA, DEFAULT_MODEL
from .streaming import DEFAULT_THROTTLE_MS

load_dotenv()


@dataclass(frozen=True)
class Config:
    openai_api_key: Optional[str] = None
    chat_model: str = DEFAULT_MODEL
    context_quota: int = DEFAULT_CONTEXT_QUOTA
    context_margin: float = DEFAULT_MARGIN_FACTOR
    stream_throttle_ms: float = DEFAULT_THROTTLE_MS
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if not 0 < self.context_margin <= 1:
            raise ValueError(f"CONTEXT_MARGIN must be in (0, 1], got {self.context_margin}")
        if self.context_quota <= 0:
            raise ValueError(f"CONTEXT_QUOTA must be positive, got {self.context_quota}")

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            chat_model=os.getenv("CHAT_MODEL", DEFAULT_MODEL),
            context_quota=int(os.getenv("CONTEXT_QUOTA", DEFAULT_CONTEXT_QUOTA)),
            context_margin=float(os.getenv("CONTEXT_MARGIN", DEFAULT_MARGIN_FACTOR)),
            stream_throttle_ms=float(os.getenv("STREAM_THROTTLE_MS", DEFAULT_THROTTLE_MS)),
            log_level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        )


def configure_structlog(level: str = "WARNING") -> None:
    """Initialize structlog with clean, readable console logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        stream=sys.stderr,
        force=True,
        format="%(message)s",
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), pad_event=20),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
