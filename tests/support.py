"""Shared builders and test doubles for the chapterqa test suite."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Sequence

from chapterqa.cancellation import CancellationToken
from chapterqa.models.datatypes import ChatMessage

CHAPTER_SECONDS = 600.0
BOOK_TITLE = "The Lighthouse Keeper"


def segment_text(chapter_idx: int, part: int) -> str:
    """Return deterministic two-sentence segment text with a per-chapter marker."""

    return (
        f"In chapter {chapter_idx} part {part}, Mara studies the tide tables. "
        f"Marker chapter-{chapter_idx}-secret is noted."
    )


def transcript_payload(
    chapter_count: int = 5,
    segments_per_chapter: int = 4,
    *,
    text_factory: Callable[[int, int], str] = segment_text,
) -> dict[str, Any]:
    """Build a canonical transcript payload with evenly spaced chapters and segments."""

    chapters: list[dict[str, Any]] = []
    segments: list[dict[str, Any]] = []
    step = CHAPTER_SECONDS / segments_per_chapter
    for idx in range(1, chapter_count + 1):
        chapter_start = (idx - 1) * CHAPTER_SECONDS
        chapters.append(
            {
                "idx": idx,
                "title": f"Chapter {idx}",
                "start_s": chapter_start,
                "end_s": chapter_start + CHAPTER_SECONDS,
            }
        )
        for position in range(segments_per_chapter):
            segment_start = chapter_start + position * step
            segments.append(
                {
                    "chapter_idx": idx,
                    "start_s": segment_start,
                    "end_s": segment_start + step,
                    "text": text_factory(idx, position + 1),
                }
            )
    return {
        "source": {
            "platform": "youtube",
            "video_id": "abc123",
            "title": BOOK_TITLE,
            "channel": "Public Domain Readings",
            "duration_s": chapter_count * CHAPTER_SECONDS,
            "rights": "public-domain",
            "language": "en",
            "captions_kind": "asr",
        },
        "chapters": chapters,
        "segments": segments,
    }


def summaries_payload(chapter_count: int = 5) -> list[dict[str, Any]]:
    return [
        {"idx": idx, "title": f"Chapter {idx}", "summary": f"Summary of chapter {idx}."}
        for idx in range(1, chapter_count + 1)
    ]


def write_dataset(
    directory: Path,
    audiobook_id: str = "lighthouse",
    *,
    payload: dict[str, Any] | None = None,
    summaries: list[dict[str, Any]] | None = None,
    compressed: Any = None,
) -> Path:
    """Write a transcript dataset and optional sidecars; return the dataset path."""

    directory.mkdir(parents=True, exist_ok=True)
    dataset_path = directory / f"{audiobook_id}.json"
    dataset_path.write_text(json.dumps(payload or transcript_payload()), encoding="utf-8")
    if summaries is not None:
        (directory / f"{audiobook_id}.summaries.json").write_text(
            json.dumps(summaries),
            encoding="utf-8",
        )
    if compressed is not None:
        (directory / f"{audiobook_id}.compressed.json").write_text(
            json.dumps(compressed),
            encoding="utf-8",
        )
    return dataset_path


class FakeCompletion:
    """Scripted completion collaborator that records calls and honors cancellation.

    Replies are consumed in order; a `responder` callback takes precedence and
    receives `(system, messages, stage)`.
    """

    def __init__(
        self,
        replies: Sequence[str] = (),
        *,
        model: str = "fake-model",
        delay: float = 0.0,
        error: Exception | None = None,
        responder: Callable[[str, Sequence[ChatMessage], str], str] | None = None,
    ) -> None:
        self.model = model
        self.replies = list(replies)
        self.delay = delay
        self.error = error
        self.responder = responder
        self.calls: list[dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    async def complete(
        self,
        *,
        system: str,
        messages: Sequence[ChatMessage],
        temperature: float,
        cancel_token: CancellationToken,
        stage: str = "answer",
    ) -> str:
        self.calls.append(
            {
                "system": system,
                "messages": list(messages),
                "temperature": temperature,
                "stage": stage,
            }
        )
        return await cancel_token.guard(self._reply(system, messages, stage), stage=stage)

    async def _reply(self, system: str, messages: Sequence[ChatMessage], stage: str) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.responder is not None:
                return self.responder(system, messages, stage)
            if self.replies:
                return self.replies.pop(0)
            return "Mara studies the tide tables. [t=00:00]"
        finally:
            self.active -= 1

    def prompts(self) -> str:
        """Return every system and message text sent so far, joined."""

        parts: list[str] = []
        for call in self.calls:
            parts.append(call["system"])
            parts.extend(message.content for message in call["messages"])
        return "\n".join(parts)
