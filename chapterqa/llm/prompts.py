"""Prompt template library for LLM stages.

Responsibilities:
- Centralize prompt construction for answering, keyword extraction,
  compression, and note taking.
- Keep prompts deterministic for a given book/chapter/question.
"""

from __future__ import annotations


class PromptLibrary:
    """Build prompt strings for supported LLM tasks."""

    def global_system_prompt(self) -> str:
        """Return voice-style rules shared by every answering call."""

        return (
            "You are an audiobook listening companion answering questions by voice.\n"
            "Rules:\n"
            "- Spoiler-safe by construction: use only the current chapter and any earlier "
            "summaries provided. Ignore later content entirely.\n"
            "- Be concise, clear, and encouraging; answers are read aloud, so prefer short "
            "sentences, short quotes, and short explanations.\n"
            "- When available, cite the paragraph IDs (for example [p3]) or time tags "
            "(for example [t=MM:SS]) shown in the chapter content.\n"
            "- No meta commentary and no refusals; just answer from the allowed context."
        )

    def answerer_system_prompt(
        self,
        book_title: str,
        chapter_idx: int,
        chapter_title: str,
    ) -> str:
        """Return the per-call statement binding the answer to the allowed chapter."""

        return (
            f'You are answering questions strictly up to Chapter {chapter_idx} - '
            f'"{chapter_title}" of "{book_title}".\n'
            "Use ONLY the provided chapter content and the optional brief summaries of "
            "earlier chapters. Never reveal, hint at, or speculate about anything that "
            "happens after this point in the book.\n"
            "Output JSON matching:\n"
            '{"answer_markdown": string, '
            '"citations": [{"type": "para" | "time", "ref": string}]}'
        )

    def answering_system_prompt(
        self,
        book_title: str,
        chapter_idx: int,
        chapter_title: str,
    ) -> str:
        """Return the combined global and per-call system prompt."""

        return (
            self.global_system_prompt()
            + "\n\n"
            + self.answerer_system_prompt(book_title, chapter_idx, chapter_title)
        )

    def keyword_system_prompt(self) -> str:
        """Return the fixed keyword-extraction instruction for focused retrieval."""

        return (
            "From the user's question, propose 8-12 concise, content-bearing "
            "keywords or phrases for retrieval within THIS chapter only.\n"
            "Return only a JSON array of strings."
        )

    def compress_system_prompt(self, target_tokens: int) -> str:
        """Return the chapter compression instruction."""

        return (
            f"Summarize ONLY the current chapter into about {target_tokens} tokens.\n"
            "Preserve key entities, definitions, causal links, and pivotal quotes, "
            "keeping any [t=MM:SS] markers that are present.\n"
            "Do not include any content from later chapters.\n"
            "Return plain markdown text (no JSON)."
        )

    def notes_system_prompt(self) -> str:
        """Return the note-taking instruction for short listener discussions."""

        return (
            "From the transcript of the short discussion, create only high-level notes.\n"
            "Format:\n"
            "Topic: [one short line]\n"
            "Key Realizations: [2-4 bullets]\n"
            "Takeaways: [1-3 bullets]\n"
            "Next Steps: [only if explicitly discussed]\n"
            "No dialogue or filler."
        )
