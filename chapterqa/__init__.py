"""Top-level package for chapterqa.

This package answers listener questions about an audiobook using only content
the listener has already reached. The main entry points are
`ChapterQAPipeline` for one request and `RequestCoordinator` for voice
sessions with single-flight execution and barge-in.
"""

from .cancellation import CancellationToken
from .models.datatypes import AnswerResult, QARequest
from .pipeline import ChapterQAPipeline, InteractionState, RequestCoordinator

__all__ = [
    "AnswerResult",
    "CancellationToken",
    "ChapterQAPipeline",
    "InteractionState",
    "QARequest",
    "RequestCoordinator",
    "__version__",
]

__version__ = "0.1.0"
