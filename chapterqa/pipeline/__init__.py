"""Question-answering pipeline package.

This package contains the stage orchestrator, its telemetry helpers, and the
per-session request coordinator that enforces single-flight execution.
"""

from .coordinator import InteractionState, RequestCoordinator
from .orchestrator import ChapterQAPipeline

__all__ = ["ChapterQAPipeline", "InteractionState", "RequestCoordinator"]
