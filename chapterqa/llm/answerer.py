"""Final answering call and answer post-processing.

Responsibilities:
- Send the assembled messages to the completion collaborator.
- Parse structured JSON replies, falling back to plain text with inline markers.
- Keep only citations inside the allowed chapter and derive a playback hint.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Sequence

from ..cancellation import CancellationToken
from ..errors import UpstreamServiceError
from ..models.datatypes import (
    AnswerResult,
    ChapterContent,
    ChatMessage,
    Citation,
    PackingMode,
    PlaybackHint,
)
from ..parsing import format_time_tag, parse_time_tag, strip_code_fence
from .completion import CompletionService

ANSWER_TEMPERATURE = 0.2

_INLINE_TIME_RE = re.compile(r"\[(?:t=)?\d+:[0-5]\d\]")
_INLINE_PARA_RE = re.compile(r"\[(?:p|para)(\d+)\]")
_PARA_REF_RE = re.compile(r"^\[?(?:p|para)\s*(\d+)\]?$", re.IGNORECASE)


def _normalize_time_ref(ref: str) -> str | None:
    """Return `[t=MM:SS]` for a time reference, or `None` when malformed."""

    candidate = ref.strip()
    if not candidate.startswith("["):
        candidate = f"[{candidate}]"
    seconds = parse_time_tag(candidate)
    if seconds is None:
        return None
    return format_time_tag(seconds)


def _para_number(ref: str) -> int | None:
    match = _PARA_REF_RE.match(ref.strip())
    if match is None:
        return None
    return int(match.group(1))


def _normalize_para_ref(ref: str) -> str | None:
    number = _para_number(ref)
    if number is None:
        return None
    return f"[p{number}]"


def extract_inline_citations(text: str) -> list[Citation]:
    """Collect `[t=MM:SS]`, `[MM:SS]`, `[pN]` and `[paraN]` markers in order."""

    found: list[tuple[int, Citation]] = []
    for match in _INLINE_TIME_RE.finditer(text):
        ref = _normalize_time_ref(match.group(0))
        if ref is not None:
            found.append((match.start(), Citation(type="time", ref=ref)))
    for match in _INLINE_PARA_RE.finditer(text):
        found.append((match.start(), Citation(type="para", ref=f"[p{int(match.group(1))}]")))
    found.sort(key=lambda item: item[0])
    return _dedupe([citation for _, citation in found])


def parse_structured_citations(raw_citations: Any) -> list[Citation]:
    """Normalize a JSON `citations` list, dropping malformed entries."""

    if not isinstance(raw_citations, list):
        return []
    citations: list[Citation] = []
    for item in raw_citations:
        if not isinstance(item, dict) or not isinstance(item.get("ref"), str):
            continue
        kind = item.get("type")
        if kind == "time":
            ref = _normalize_time_ref(item["ref"])
        elif kind == "para":
            ref = _normalize_para_ref(item["ref"])
        else:
            continue
        if ref is not None:
            citations.append(Citation(type=kind, ref=ref))
    return _dedupe(citations)


def _dedupe(citations: Sequence[Citation]) -> list[Citation]:
    seen: set[Citation] = set()
    unique: list[Citation] = []
    for citation in citations:
        if citation not in seen:
            seen.add(citation)
            unique.append(citation)
    return unique


def parse_answer_reply(reply: str) -> tuple[str, list[Citation]]:
    """Split a raw reply into answer markdown and normalized citations."""

    try:
        payload = json.loads(strip_code_fence(reply))
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("answer_markdown"), str):
        answer = payload["answer_markdown"].strip()
        citations = parse_structured_citations(payload.get("citations"))
        if not citations:
            citations = extract_inline_citations(answer)
        return answer, citations

    answer = reply.strip()
    return answer, extract_inline_citations(answer)


class CompletionInvoker:
    """Run the answering call and shape its reply into an `AnswerResult`."""

    def __init__(
        self,
        completion: CompletionService,
        *,
        temperature: float = ANSWER_TEMPERATURE,
    ) -> None:
        self.completion = completion
        self.temperature = temperature

    async def answer(
        self,
        messages: Sequence[ChatMessage],
        chapter: ChapterContent,
        packing_mode: PackingMode,
        cancel_token: CancellationToken,
        *,
        paragraph_count: int = 0,
    ) -> AnswerResult:
        """Return the answer bound to `chapter`.

        `paragraph_count` is the number of `[pN]` labels in the prompt; paragraph
        citations outside `1..paragraph_count` are dropped.

        Raises:
            UpstreamServiceError: On provider failure or an empty answer.
        """

        system = "\n\n".join(message.content for message in messages if message.role == "system")
        conversation = [message for message in messages if message.role != "system"]
        reply = await self.completion.complete(
            system=system,
            messages=conversation,
            temperature=self.temperature,
            cancel_token=cancel_token,
            stage="answer",
        )

        answer, citations = parse_answer_reply(reply)
        if not answer:
            raise UpstreamServiceError(
                "The answering call returned an empty answer.",
                stage="answer",
                hint="Retry the question.",
            )

        citations = self.filter_citations(citations, chapter, paragraph_count)
        return AnswerResult(
            answer_markdown=answer,
            citations=tuple(citations),
            playback_hint=self.playback_hint(citations, chapter, packing_mode),
            packing_mode=packing_mode,
        )

    @staticmethod
    def filter_citations(
        citations: Sequence[Citation],
        chapter: ChapterContent,
        paragraph_count: int = 0,
    ) -> list[Citation]:
        """Drop time citations outside the chapter and unknown paragraph IDs."""

        lower = math.floor(chapter.chapter.start_s)
        upper = math.ceil(chapter.chapter.end_s)
        kept: list[Citation] = []
        for citation in citations:
            if citation.type == "time":
                seconds = parse_time_tag(citation.ref)
                if seconds is None or not lower <= seconds <= upper:
                    continue
            elif citation.type == "para":
                number = _para_number(citation.ref)
                if number is None or not 1 <= number <= paragraph_count:
                    continue
            kept.append(citation)
        return kept

    @staticmethod
    def playback_hint(
        citations: Sequence[Citation],
        chapter: ChapterContent,
        packing_mode: PackingMode,
    ) -> PlaybackHint | None:
        """Return the first time citation, else the first focused segment, else `None`."""

        for citation in citations:
            if citation.type == "time":
                seconds = parse_time_tag(citation.ref)
                if seconds is not None:
                    # Tags truncate to whole seconds; clamp back into the chapter.
                    start_s = min(max(float(seconds), chapter.chapter.start_s), chapter.chapter.end_s)
                    return PlaybackHint(chapter_idx=chapter.idx, start_s=start_s)
        if packing_mode is PackingMode.FOCUSED and chapter.segments:
            return PlaybackHint(chapter_idx=chapter.idx, start_s=chapter.segments[0].start_s)
        return None
