"""Prompt assembly from allowed chapter content.

Responsibilities:
- Render the chapter block for full, compressed, and focused packing.
- Render optional prior-summary and user-memory blocks.
- Build the deterministic system and user messages for the answering call.
"""

from __future__ import annotations

from typing import Sequence

from ..errors import EmptyContentError
from ..llm.prompts import PromptLibrary
from ..models.datatypes import ChapterContent, ChatMessage, PackingMode, PriorSummary
from ..parsing import format_time_tag
from .paragraphs import Paragraphizer


class ContextAssembler:
    """Turn allowed chapter content into a bounded, time-tagged prompt."""

    CHAPTER_HEADING = "## Current Chapter Content"
    SUMMARIES_HEADING = "## Prior Chapter Summaries"
    MEMORY_HEADING = "## User Notes"
    QUESTION_HEADING = "## Question"

    def __init__(
        self,
        paragraphizer: Paragraphizer | None = None,
        prompts: PromptLibrary | None = None,
    ) -> None:
        self.paragraphizer = paragraphizer if paragraphizer is not None else Paragraphizer()
        self.prompts = prompts if prompts is not None else PromptLibrary()

    def chapter_block(self, chapter: ChapterContent, mode: PackingMode) -> str:
        """Render chapter content for the selected packing mode."""

        if mode is PackingMode.COMPRESSED:
            return (chapter.compressed_text or "").strip()

        paragraphs = self.paragraphizer.paragraphs(chapter.segments)
        return "\n\n".join(
            f"[p{number}] {format_time_tag(paragraph.start_s)} {paragraph.text}"
            for number, paragraph in enumerate(paragraphs, start=1)
        )

    def paragraph_count(self, chapter: ChapterContent, mode: PackingMode) -> int:
        """Return how many `[pN]` labels `chapter_block` renders for `mode`."""

        if mode is PackingMode.COMPRESSED:
            return 0
        return len(self.paragraphizer.paragraphs(chapter.segments))

    @staticmethod
    def prior_summary_block(summaries: Sequence[PriorSummary]) -> str:
        """Render prior summaries as one bullet per chapter."""

        return "\n".join(
            f"- Chapter {summary.idx}: {summary.title}\n  {summary.summary.strip()}"
            for summary in summaries
        )

    def build_messages(
        self,
        *,
        book_title: str,
        chapter: ChapterContent,
        mode: PackingMode,
        question: str,
        prior_summaries: Sequence[PriorSummary] = (),
        user_memory: str | None = None,
    ) -> list[ChatMessage]:
        """Return `[system, user]` messages in fixed block order.

        Raises:
            EmptyContentError: If the chapter block renders empty.
        """

        chapter_block = self.chapter_block(chapter, mode)
        if not chapter_block:
            raise EmptyContentError(
                f"Chapter {chapter.idx} produced no content for `{mode.value}` packing.",
                stage="assemble",
                hint="Check the chapter transcript or request a different packing mode.",
            )

        sections = [f"{self.CHAPTER_HEADING}\n\n{chapter_block}"]
        if prior_summaries:
            sections.append(
                f"{self.SUMMARIES_HEADING}\n\n{self.prior_summary_block(prior_summaries)}"
            )
        if user_memory is not None and user_memory.strip():
            sections.append(f"{self.MEMORY_HEADING}\n\n{user_memory.strip()}")
        sections.append(f"{self.QUESTION_HEADING}\n\n{question.strip()}")

        system_content = self.prompts.answering_system_prompt(
            book_title, chapter.idx, chapter.title
        )
        return [
            ChatMessage(role="system", content=system_content),
            ChatMessage(role="user", content="\n\n".join(sections)),
        ]
