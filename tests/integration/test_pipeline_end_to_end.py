"""End-to-end pipeline tests over a synthetic five-chapter audiobook."""

from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest

from chapterqa.cancellation import CancellationToken
from chapterqa.errors import (
    GENERIC_APOLOGY,
    NotFoundError,
    RequestCancelledError,
    UpstreamServiceError,
    ValidationError,
    user_facing_message,
)
from chapterqa.io.transcript_store import TranscriptStore
from chapterqa.models.datatypes import ModeHint, PackingMode, QARequest
from chapterqa.pipeline.orchestrator import ChapterQAPipeline
from chapterqa.telemetry.logger import RunLogger
from tests.support import FakeCompletion, segment_text, transcript_payload, write_dataset


def _request(**overrides: object) -> QARequest:
    values: dict[str, object] = {
        "audiobook_id": "lighthouse",
        "question": "Why does Mara study the tide tables?",
        "playback_chapter_idx": 5,
        "user_progress_idx": 2,
    }
    values.update(overrides)
    return QARequest(**values)


def _by_stage(replies: dict[str, str]):
    def _respond(system: str, messages: object, stage: str) -> str:
        return replies[stage]

    return _respond


def _long_dataset(directory: Path, compressed: object = None) -> TranscriptStore:
    payload = transcript_payload(text_factory=lambda idx, part: segment_text(idx, part) * 60)
    write_dataset(directory, payload=payload, compressed=compressed)
    return TranscriptStore(directory)


def test_scrubbed_playback_never_leaks_later_chapters(transcript_store: TranscriptStore) -> None:
    """Playback at chapter 5 with progress 2 should only expose chapter 2 and summary 1."""

    completion = FakeCompletion()
    sink = io.StringIO()
    pipeline = ChapterQAPipeline(transcript_store, completion, run_logger=RunLogger(sink=sink))

    result = asyncio.run(pipeline.run(_request()))

    prompts = completion.prompts()
    assert "chapter-2-secret" in prompts
    for later in (3, 4, 5):
        assert f"chapter-{later}-secret" not in prompts
        assert f"Summary of chapter {later}." not in prompts
    assert "Summary of chapter 1." in prompts
    assert "Summary of chapter 2." not in prompts
    assert "Chapter 2" in completion.calls[0]["system"]
    assert result.packing_mode is PackingMode.FULL
    assert result.latency_ms is not None
    assert "event=clamped" in sink.getvalue()
    assert "allowed=2" in sink.getvalue()


def test_every_progress_value_bounds_the_prompt(transcript_store: TranscriptStore) -> None:
    """For each progress value, prompts should carry no chapter beyond the allowed one."""

    for progress in range(1, 6):
        completion = FakeCompletion()
        pipeline = ChapterQAPipeline(transcript_store, completion)

        asyncio.run(pipeline.run(_request(user_progress_idx=progress)))

        prompts = completion.prompts()
        assert f"chapter-{progress}-secret" in prompts
        for later in range(progress + 1, 6):
            assert f"chapter-{later}-secret" not in prompts


def test_summaries_can_be_excluded(transcript_store: TranscriptStore) -> None:
    """Requests without prior summaries should not include the summaries block."""

    completion = FakeCompletion()
    pipeline = ChapterQAPipeline(transcript_store, completion)

    asyncio.run(pipeline.run(_request(user_progress_idx=4, include_prior_summaries=False)))

    assert "## Prior Chapter Summaries" not in completion.prompts()


def test_answer_citations_and_playback_hint_stay_in_allowed_chapter(
    transcript_store: TranscriptStore,
) -> None:
    """Citations pointing into later chapters should be dropped from the result."""

    completion = FakeCompletion(
        replies=["She studies them [t=10:00] [p2] and later [t=45:00] [p7]."]
    )
    pipeline = ChapterQAPipeline(transcript_store, completion)

    result = asyncio.run(pipeline.run(_request()))

    assert "[p2] [t=15:00]" in completion.prompts()
    assert [citation.ref for citation in result.citations] == ["[t=10:00]", "[p2]"]
    assert result.playback_hint is not None
    assert result.playback_hint.chapter_idx == 2
    assert result.playback_hint.start_s == 600.0


def test_focused_mode_extracts_keywords_then_answers(transcript_store: TranscriptStore) -> None:
    """Focused packing should run keyword extraction before the answering call."""

    completion = FakeCompletion(
        responder=_by_stage({"retrieve": '["tide tables"]', "answer": "Because of the storm."})
    )
    progress: list[tuple[str, int, int]] = []
    pipeline = ChapterQAPipeline(
        transcript_store,
        completion,
        stage_progress_callback=lambda stage, index, total: progress.append((stage, index, total)),
    )

    result = asyncio.run(pipeline.run(_request(mode_hint=ModeHint.FOCUSED)))

    assert [call["stage"] for call in completion.calls] == ["retrieve", "answer"]
    assert result.packing_mode is PackingMode.FOCUSED
    assert result.playback_hint is not None
    assert result.playback_hint.start_s == 600.0
    assert [item[0] for item in progress] == ["gate", "load", "plan", "retrieve", "assemble", "answer"]
    assert progress[0][1:] == (1, 7)


def test_compressed_hint_without_sidecar_compresses_once(transcript_store: TranscriptStore) -> None:
    """An explicit compressed request should condense the chapter and cache the result."""

    completion = FakeCompletion(
        responder=_by_stage({"compress": "Condensed chapter two.", "answer": "Tides."})
    )
    pipeline = ChapterQAPipeline(transcript_store, completion)

    async def scenario():
        await pipeline.run(_request(mode_hint=ModeHint.COMPRESSED))
        return await pipeline.run(_request(mode_hint=ModeHint.COMPRESSED))

    result = asyncio.run(scenario())

    assert [call["stage"] for call in completion.calls] == ["compress", "answer", "answer"]
    compress_input = completion.calls[0]["messages"][0].content
    assert "chapter-2-secret" in compress_input
    assert "chapter-3-secret" not in compress_input
    answer_prompt = completion.calls[1]["messages"][0].content
    assert "Condensed chapter two." in answer_prompt
    assert "chapter-2-secret" not in answer_prompt
    assert result.packing_mode is PackingMode.COMPRESSED


def test_auto_mode_over_budget_prefers_compressed_sidecar(tmp_path: Path) -> None:
    """Over-budget chapters should use a stored compressed form without extra calls."""

    store = _long_dataset(tmp_path, compressed={"2": "Stored condensed chapter two."})
    completion = FakeCompletion()
    pipeline = ChapterQAPipeline(store, completion)

    result = asyncio.run(pipeline.run(_request(token_budget=1000)))

    assert [call["stage"] for call in completion.calls] == ["answer"]
    assert "Stored condensed chapter two." in completion.prompts()
    assert result.packing_mode is PackingMode.COMPRESSED


def test_auto_mode_over_budget_without_sidecar_uses_focused_retrieval(tmp_path: Path) -> None:
    """Over-budget chapters without a compressed form should fall to focused packing."""

    store = _long_dataset(tmp_path)
    completion = FakeCompletion(
        responder=_by_stage({"retrieve": '["zeppelin"]', "answer": "No airships appear."})
    )
    pipeline = ChapterQAPipeline(store, completion)

    state = pipeline.prepare(_request(token_budget=1000))
    result = asyncio.run(pipeline.run(_request(token_budget=1000)))

    assert state.require_plan().mode is PackingMode.FOCUSED
    assert state.require_plan().reason == "over_budget_no_compressed"
    assert [call["stage"] for call in completion.calls] == ["retrieve", "answer"]
    assert result.packing_mode is PackingMode.FOCUSED


def test_cancellation_during_answer_returns_promptly(transcript_store: TranscriptStore) -> None:
    """Firing the token mid-call should raise `RequestCancelledError` without waiting."""

    pipeline = ChapterQAPipeline(transcript_store, FakeCompletion(delay=5.0))

    async def scenario() -> RequestCancelledError:
        token = CancellationToken()
        task = asyncio.ensure_future(pipeline.run(_request(), token))
        await asyncio.sleep(0.05)
        token.cancel("barge_in")
        with pytest.raises(RequestCancelledError) as exc_info:
            await task
        return exc_info.value

    error = asyncio.run(asyncio.wait_for(scenario(), timeout=2.0))

    assert error.stage == "answer"
    assert user_facing_message(error) is None


def test_pre_cancelled_token_skips_every_stage(transcript_store: TranscriptStore) -> None:
    """A token cancelled before the run should stop at the first stage boundary."""

    completion = FakeCompletion()
    pipeline = ChapterQAPipeline(transcript_store, completion)

    async def scenario() -> None:
        token = CancellationToken()
        token.cancel("stopped")
        await pipeline.run(_request(), token)

    with pytest.raises(RequestCancelledError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.stage == "gate"
    assert completion.calls == []


def test_failures_map_to_user_facing_messages(transcript_store: TranscriptStore) -> None:
    """Upstream failures apologize; validation and missing data report their detail."""

    failing = ChapterQAPipeline(
        transcript_store,
        FakeCompletion(error=UpstreamServiceError("provider down", stage="answer")),
    )
    with pytest.raises(UpstreamServiceError) as upstream:
        asyncio.run(failing.run(_request()))
    assert user_facing_message(upstream.value) == GENERIC_APOLOGY

    pipeline = ChapterQAPipeline(transcript_store, FakeCompletion())
    with pytest.raises(ValidationError) as invalid:
        asyncio.run(pipeline.run(_request(question="   ", token_budget=10)))
    assert "`question`" in invalid.value.detail
    assert "`token_budget`" in invalid.value.detail
    assert user_facing_message(invalid.value) == invalid.value.detail

    with pytest.raises(NotFoundError):
        asyncio.run(pipeline.run(_request(audiobook_id="unknown-book")))
