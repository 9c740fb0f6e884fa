"""Keyword-driven segment retrieval for over-budget chapters.

Responsibilities:
- Ask the completion collaborator for question keywords as a JSON array.
- Narrow the allowed chapter's segments to keyword hits plus neighbors.
- Fall back to the chapter's leading segments when nothing matches.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Sequence

from ..cancellation import CancellationToken
from ..errors import UpstreamServiceError
from ..models.datatypes import ChapterContent, ChatMessage, Segment
from ..parsing import strip_code_fence
from ..telemetry.logger import RunLogger
from ..text.budget_planner import BudgetPlanner
from ..text.keyword_selection import select_by_keywords
from .cache import ResponseCache
from .completion import CompletionService
from .prompts import PromptLibrary

MAX_KEYWORDS = 12


def parse_keywords(raw_reply: str) -> list[str]:
    """Parse a JSON array reply into at most `MAX_KEYWORDS` non-blank strings.

    Raises:
        ValueError: If the reply is not a JSON array.
    """

    payload = json.loads(strip_code_fence(raw_reply))
    if not isinstance(payload, list):
        raise ValueError("keyword reply must be a JSON array")
    keywords = [
        " ".join(item.split())
        for item in payload
        if isinstance(item, str) and item.strip()
    ]
    return keywords[:MAX_KEYWORDS]


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    """Focused selection for one chapter."""

    keywords: tuple[str, ...]
    segments: tuple[Segment, ...]
    fallback: bool


class FocusedRetriever:
    """Select the allowed chapter's segments relevant to one question."""

    def __init__(
        self,
        completion: CompletionService,
        *,
        planner: BudgetPlanner | None = None,
        prompts: PromptLibrary | None = None,
        cache: ResponseCache | None = None,
        temperature: float = 0.0,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.completion = completion
        self.planner = planner if planner is not None else BudgetPlanner()
        self.prompts = prompts if prompts is not None else PromptLibrary()
        self.cache = cache if cache is not None else ResponseCache()
        self.temperature = temperature
        self._run_logger = run_logger

    async def extract_keywords(
        self,
        question: str,
        cancel_token: CancellationToken,
    ) -> list[str]:
        """Return cached or freshly extracted keywords for a question.

        Raises:
            UpstreamServiceError: If the call fails or the reply is unparseable.
        """

        cache_key = ResponseCache.make_key(
            model=self.completion.model,
            operation="keywords",
            input_identity={"question": question},
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return json.loads(cached)

        reply = await self.completion.complete(
            system=self.prompts.keyword_system_prompt(),
            messages=[ChatMessage(role="user", content=question)],
            temperature=self.temperature,
            cancel_token=cancel_token,
            stage="retrieve",
        )
        try:
            keywords = parse_keywords(reply)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError subclass.
            raise UpstreamServiceError(
                "Keyword extraction returned an unparseable reply.",
                stage="retrieve",
                hint="Retry the question, or ask in `full` or `compressed` mode.",
            ) from exc

        self.cache.set(cache_key, json.dumps(keywords))
        return keywords

    async def retrieve(
        self,
        chapter: ChapterContent,
        question: str,
        token_budget: int,
        cancel_token: CancellationToken,
    ) -> RetrievalResult:
        """Narrow `chapter` to keyword hits; never returns an empty selection."""

        keywords = await self.extract_keywords(question, cancel_token)
        selected = select_by_keywords(chapter.segments, keywords)
        if selected:
            return RetrievalResult(
                keywords=tuple(keywords),
                segments=tuple(selected),
                fallback=False,
            )

        leading = self.leading_segments(chapter.segments, self.planner.full_threshold(token_budget))
        if self._run_logger is not None:
            self._run_logger.log_warning(
                "retrieve",
                "keyword_fallback",
                chapter=chapter.idx,
                keywords=len(keywords),
                segments=len(leading),
            )
        return RetrievalResult(keywords=tuple(keywords), segments=tuple(leading), fallback=True)

    def leading_segments(self, segments: Sequence[Segment], max_tokens: int) -> list[Segment]:
        """Return the longest prefix whose estimate fits `max_tokens` (at least one)."""

        selected: list[Segment] = []
        used = 0
        for segment in segments:
            cost = self.planner.estimate_tokens(segment.text)
            if selected and used + cost > max_tokens:
                break
            selected.append(segment)
            used += cost
        return selected
