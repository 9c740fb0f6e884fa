"""Unit tests for keyword scoring, neighbor selection, and focused retrieval."""

from __future__ import annotations

import asyncio
import io

import pytest

from chapterqa.cancellation import CancellationToken
from chapterqa.errors import UpstreamServiceError
from chapterqa.llm.cache import ResponseCache
from chapterqa.llm.focused_retriever import FocusedRetriever, MAX_KEYWORDS, parse_keywords
from chapterqa.models.datatypes import Chapter, ChapterContent, Segment
from chapterqa.telemetry.logger import RunLogger
from chapterqa.text.keyword_selection import score_segment, select_indices_by_keywords
from tests.support import FakeCompletion


def _chapter(texts: list[str]) -> ChapterContent:
    segments = tuple(
        Segment(chapter_idx=3, start_s=1200.0 + 10 * position, end_s=1210.0 + 10 * position, text=text)
        for position, text in enumerate(texts)
    )
    return ChapterContent(
        chapter=Chapter(idx=3, title="Chapter 3", start_s=1200.0, end_s=1800.0),
        segments=segments,
    )


_TEXTS = [
    "The storm gathers over the bay.",
    "Mara climbs the lighthouse stairs.",
    "She trims the wick by lamplight.",
    "A ship signals from the reef.",
    "The keeper writes in the log.",
    "Dawn breaks quietly.",
    "The LIGHTHOUSE beam sweeps the reef.",
]


def test_score_segment_counts_case_folded_occurrences() -> None:
    """Scores should sum literal, case-insensitive keyword occurrences."""

    assert score_segment("Reef, reef and REEF.", ["reef"]) == 3
    assert score_segment("The lighthouse", ["LIGHTHOUSE", "the", ""]) == 2
    assert score_segment("Nothing here", ["reef"]) == 0


def test_selection_adds_neighbors_in_chronological_order() -> None:
    """Hits should be expanded by one neighbor each side and kept sorted and unique."""

    chapter = _chapter(_TEXTS)

    positions = select_indices_by_keywords(chapter.segments, ["lighthouse"])

    assert positions == [0, 1, 2, 5, 6]
    assert positions == sorted(set(positions))


def test_parse_keywords_accepts_fenced_json_and_caps_count() -> None:
    """Keyword replies may be fenced; blank items drop and the list is capped."""

    reply = "```json\n" + str([f" word {n} " for n in range(20)] + ["   "]).replace("'", '"') + "\n```"

    keywords = parse_keywords(reply)

    assert len(keywords) == MAX_KEYWORDS
    assert keywords[0] == "word 0"


def test_parse_keywords_rejects_non_array_replies() -> None:
    """Replies that are not JSON arrays should raise `ValueError`."""

    with pytest.raises(ValueError):
        parse_keywords('{"keywords": ["reef"]}')
    with pytest.raises(ValueError):
        parse_keywords("reef, lighthouse")


def test_retrieve_selects_keyword_hits_and_caches_keywords() -> None:
    """Retrieval should narrow to hits plus neighbors and reuse cached keywords."""

    completion = FakeCompletion(replies=['["reef"]'])
    retriever = FocusedRetriever(completion, cache=ResponseCache())
    chapter = _chapter(_TEXTS)

    async def scenario():
        token = CancellationToken()
        first = await retriever.retrieve(chapter, "What is at the reef?", 180000, token)
        second = await retriever.retrieve(chapter, "What is at  the reef?", 180000, token)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.keywords == ("reef",)
    assert not first.fallback
    assert [segment.text for segment in first.segments] == [
        _TEXTS[2],
        _TEXTS[3],
        _TEXTS[4],
        _TEXTS[5],
        _TEXTS[6],
    ]
    assert second.segments == first.segments
    assert len(completion.calls) == 1
    assert completion.calls[0]["stage"] == "retrieve"
    assert completion.calls[0]["temperature"] == 0.0


def test_retrieve_falls_back_to_leading_segments_without_hits() -> None:
    """Zero keyword hits should fall back to the chapter's leading segments."""

    sink = io.StringIO()
    completion = FakeCompletion(replies=['["zeppelin"]'])
    retriever = FocusedRetriever(completion, run_logger=RunLogger(sink=sink))
    chapter = _chapter(_TEXTS)

    result = asyncio.run(_retrieve(retriever, chapter))

    assert result.fallback
    assert result.segments == chapter.segments
    assert "event=keyword_fallback" in sink.getvalue()


async def _retrieve(retriever: FocusedRetriever, chapter: ChapterContent):
    return await retriever.retrieve(chapter, "Any airships?", 180000, CancellationToken())


def test_leading_segments_respects_token_limit_but_keeps_one() -> None:
    """Leading selection should stop before exceeding the limit yet never be empty."""

    retriever = FocusedRetriever(FakeCompletion())
    segments = _chapter(_TEXTS).segments

    assert retriever.leading_segments(segments, 0) == [segments[0]]
    assert retriever.leading_segments(segments, 17) == [segments[0], segments[1]]


def test_unparseable_keyword_reply_raises_upstream_error() -> None:
    """An unparseable keyword reply should fail the retrieve stage."""

    retriever = FocusedRetriever(FakeCompletion(replies=["reef and lighthouse"]))

    with pytest.raises(UpstreamServiceError) as exc_info:
        asyncio.run(_retrieve(retriever, _chapter(_TEXTS)))

    assert exc_info.value.stage == "retrieve"
    assert "unparseable" in exc_info.value.detail
