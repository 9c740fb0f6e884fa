"""Shared typed data models for chapterqa.

This package contains dataclasses used across pipeline modules to avoid
cross-module coupling and circular imports.
"""

from .datatypes import (
    AnswerResult,
    BudgetPlan,
    Chapter,
    ChapterContent,
    ChatMessage,
    Citation,
    ModeHint,
    PackingMode,
    Paragraph,
    PlaybackHint,
    PriorSummary,
    QARequest,
    RequestState,
    Segment,
    Transcript,
    TranscriptSource,
)

__all__ = [
    "AnswerResult",
    "BudgetPlan",
    "Chapter",
    "ChapterContent",
    "ChatMessage",
    "Citation",
    "ModeHint",
    "PackingMode",
    "Paragraph",
    "PlaybackHint",
    "PriorSummary",
    "QARequest",
    "RequestState",
    "Segment",
    "Transcript",
    "TranscriptSource",
]
