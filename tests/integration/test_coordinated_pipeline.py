"""Integration tests for the request coordinator driving the real pipeline."""

from __future__ import annotations

import asyncio
import io

import pytest

from chapterqa.errors import RequestCancelledError
from chapterqa.io.transcript_store import TranscriptStore
from chapterqa.models.datatypes import ModeHint, PackingMode, QARequest
from chapterqa.pipeline.coordinator import InteractionState, RequestCoordinator
from chapterqa.pipeline.orchestrator import ChapterQAPipeline
from chapterqa.telemetry.logger import RunLogger
from tests.support import FakeCompletion


def _request(question: str, **overrides: object) -> QARequest:
    values: dict[str, object] = {
        "audiobook_id": "lighthouse",
        "question": question,
        "playback_chapter_idx": 5,
        "user_progress_idx": 2,
    }
    values.update(overrides)
    return QARequest(**values)


def _respond(system: str, messages: object, stage: str) -> str:
    if stage == "retrieve":
        return '["tide tables"]'
    return "Mara studies the tide tables. [t=10:00]"


def _user_text(call: dict[str, object]) -> str:
    return "\n".join(message.content for message in call["messages"])


def test_concurrent_submissions_never_overlap_completion_calls(
    transcript_store: TranscriptStore,
) -> None:
    """Gathered questions should reach the LLM one at a time, in submission order."""

    completion = FakeCompletion(delay=0.05, responder=_respond)
    sink = io.StringIO()
    coordinator = RequestCoordinator(
        ChapterQAPipeline(transcript_store, completion),
        run_logger=RunLogger(sink=sink),
    )
    questions = ["Who is Mara?", "Why the tide tables?", "Where is the lighthouse?"]

    async def scenario():
        return await asyncio.gather(*(coordinator.submit(_request(q)) for q in questions))

    results = asyncio.run(asyncio.wait_for(scenario(), timeout=5.0))

    assert completion.max_active == 1
    assert len(completion.calls) == 3
    assert [call["stage"] for call in completion.calls] == ["answer"] * 3
    for call, question in zip(completion.calls, questions):
        assert question in _user_text(call)
    assert all(result.packing_mode is PackingMode.FULL for result in results)
    assert "event=queued" in sink.getvalue()
    assert coordinator.state() is InteractionState.SPEAKING_ANSWER


def test_barge_in_abandons_focused_retrieval_before_answering(
    transcript_store: TranscriptStore,
) -> None:
    """An interrupted focused query should make no answer call and cache no keywords."""

    completion = FakeCompletion(delay=0.2, responder=_respond)
    pipeline = ChapterQAPipeline(transcript_store, completion)
    coordinator = RequestCoordinator(pipeline)

    async def scenario():
        interrupted = asyncio.ensure_future(
            coordinator.submit(_request("What are the tide tables?", mode_hint=ModeHint.FOCUSED))
        )
        await asyncio.sleep(0.05)
        fresh = await coordinator.barge_in(_request("Who is Mara?"))
        with pytest.raises(RequestCancelledError) as exc_info:
            await interrupted
        await asyncio.sleep(0.25)
        return fresh, exc_info.value

    fresh, error = asyncio.run(asyncio.wait_for(scenario(), timeout=5.0))

    assert error.stage == "coordinator"
    assert [call["stage"] for call in completion.calls] == ["retrieve", "answer"]
    assert "Who is Mara?" in _user_text(completion.calls[1])
    assert "What are the tide tables?" not in _user_text(completion.calls[1])
    assert not pipeline.cache.entries
    assert fresh.packing_mode is PackingMode.FULL
    assert fresh.citations
