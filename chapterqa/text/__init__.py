"""Deterministic text components for the question-answering pipeline.

This package provides the spoiler gate, budget planning, keyword selection,
paragraphization, and prompt assembly used between the LLM calls.
"""

from .budget_planner import BudgetPlanner
from .chapter_access import allowed_chapter_index, resolve_chapter_from_position
from .context_assembler import ContextAssembler
from .keyword_selection import score_segment, select_by_keywords, select_indices_by_keywords
from .paragraphs import Paragraphizer

__all__ = [
    "BudgetPlanner",
    "ContextAssembler",
    "Paragraphizer",
    "allowed_chapter_index",
    "resolve_chapter_from_position",
    "score_segment",
    "select_by_keywords",
    "select_indices_by_keywords",
]
