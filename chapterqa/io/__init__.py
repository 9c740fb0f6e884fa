"""Input/output components for chapterqa.

This package contains transcript loading, chapter selection, and sidecar
summary storage used by the pipeline.
"""

from .sidecar_store import SidecarStore, SummaryStore
from .transcript_store import TranscriptStore, transcript_from_payload

__all__ = ["SidecarStore", "SummaryStore", "TranscriptStore", "transcript_from_payload"]
