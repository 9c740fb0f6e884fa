"""Canonical transcript loading and chapter selection.

Responsibilities:
- Load and validate transcript datasets once per audiobook identity.
- Select the allowed chapter and only that chapter's segments.
- Load prior-chapter summaries and condensed chapter text from a sidecar store.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from ..errors import EmptyContentError, NotFoundError, ValidationError
from ..models.datatypes import (
    Chapter,
    ChapterContent,
    PriorSummary,
    Segment,
    Transcript,
    TranscriptSource,
)
from ..parsing import is_safe_dataset_id
from ..telemetry.logger import RunLogger
from .sidecar_store import SidecarStore, SummaryStore


PRIOR_SUMMARY_WINDOW = 3


def transcript_from_payload(payload: Mapping[str, Any], source_label: str) -> Transcript:
    """Parse a canonical transcript mapping and enforce dataset invariants.

    Raises:
        ValidationError: If required fields are missing or invariants are violated.
    """

    try:
        raw_source = payload["source"]
        raw_chapters = payload["chapters"]
        raw_segments = payload["segments"]
    except (KeyError, TypeError) as exc:
        raise _invalid(source_label, f"missing required field {exc}") from exc

    if not isinstance(raw_chapters, list) or not raw_chapters:
        raise _invalid(source_label, "`chapters` must be a non-empty list")
    if not isinstance(raw_segments, list) or not raw_segments:
        raise _invalid(source_label, "`segments` must be a non-empty list")

    try:
        source = TranscriptSource(
            platform=str(raw_source["platform"]),
            title=str(raw_source["title"]),
            duration_s=float(raw_source["duration_s"]),
            rights=str(raw_source["rights"]),
            captions_kind=str(raw_source["captions_kind"]),
            language=str(raw_source.get("language") or "en"),
            video_id=raw_source.get("video_id"),
            channel=raw_source.get("channel"),
            asr_provider=raw_source.get("asr_provider"),
            asr_model=raw_source.get("asr_model"),
        )
        chapters = tuple(
            Chapter(
                idx=int(item["idx"]),
                title=str(item["title"]),
                start_s=float(item["start_s"]),
                end_s=float(item["end_s"]),
            )
            for item in raw_chapters
        )
        segments = tuple(
            Segment(
                chapter_idx=int(item["chapter_idx"]),
                start_s=float(item["start_s"]),
                end_s=float(item["end_s"]),
                text=str(item["text"]),
            )
            for item in raw_segments
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise _invalid(source_label, f"malformed record: {exc}") from exc

    seen_indices: set[int] = set()
    for chapter in chapters:
        if chapter.end_s <= chapter.start_s:
            raise _invalid(
                source_label,
                f"chapter {chapter.idx} must have `end_s` greater than `start_s`",
            )
        if chapter.idx in seen_indices:
            raise _invalid(source_label, f"duplicate chapter index {chapter.idx}")
        seen_indices.add(chapter.idx)

    for segment in segments:
        if segment.chapter_idx not in seen_indices:
            raise _invalid(
                source_label,
                f"segment at {segment.start_s}s references unknown chapter "
                f"{segment.chapter_idx}",
            )

    return Transcript(
        source=source,
        chapters=tuple(sorted(chapters, key=lambda chapter: chapter.idx)),
        segments=segments,
    )


def _invalid(source_label: str, reason: str) -> ValidationError:
    return ValidationError(
        f"Invalid transcript dataset {source_label}: {reason}.",
        stage="load",
        hint="Re-export the canonical transcript JSON and retry.",
    )


class TranscriptStore:
    """Cache-backed access to canonical transcripts keyed by audiobook identity."""

    def __init__(
        self,
        datasets_dir: Path | None = None,
        summary_store: SummaryStore | None = None,
        run_logger: RunLogger | None = None,
        prior_summary_window: int = PRIOR_SUMMARY_WINDOW,
    ) -> None:
        """Initialize dataset root, optional sidecar store, and logger hooks."""

        self.datasets_dir = datasets_dir
        if summary_store is None and datasets_dir is not None:
            summary_store = SidecarStore(datasets_dir)
        self.summary_store = summary_store
        self.prior_summary_window = prior_summary_window
        self._run_logger = run_logger
        self._cache: dict[str, Transcript] = {}

    def register(self, audiobook_id: str, transcript: Transcript) -> None:
        """Register an already-parsed transcript under an audiobook identity."""

        self._cache[audiobook_id] = transcript

    def dataset_path(self, audiobook_id: str) -> Path:
        if not is_safe_dataset_id(audiobook_id):
            raise ValidationError(
                f"Audiobook id `{audiobook_id}` is not a valid dataset name.",
                stage="load",
                hint="Use the dataset file name without directories or a leading dot.",
            )
        if self.datasets_dir is None:
            raise NotFoundError(
                f"Audiobook `{audiobook_id}` is not registered and no datasets "
                "directory is configured.",
                stage="load",
                hint="Set `datasets_dir` or register the transcript before asking.",
            )
        return self.datasets_dir / f"{audiobook_id}.json"

    def load(self, audiobook_id: str) -> Transcript:
        """Return the transcript for an audiobook, loading it on first access."""

        cached = self._cache.get(audiobook_id)
        if cached is not None:
            return cached

        path = self.dataset_path(audiobook_id)
        if not path.exists():
            raise NotFoundError(
                f"Transcript dataset not found for audiobook `{audiobook_id}`: `{path}`.",
                stage="load",
                hint="Verify the audiobook id and the configured datasets directory.",
            )
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise _invalid(f"`{path.name}`", f"invalid JSON ({exc.msg})") from exc
        if not isinstance(payload, dict):
            raise _invalid(f"`{path.name}`", "root must be a JSON object")

        transcript = transcript_from_payload(payload, f"`{path.name}`")
        self._cache[audiobook_id] = transcript
        return transcript

    def chapters(self, audiobook_id: str) -> list[Chapter]:
        return self.load(audiobook_id).sorted_chapters()

    def total_duration(self, audiobook_id: str) -> float:
        return self.load(audiobook_id).total_duration_s

    def chapter_bounds(self, audiobook_id: str, chapter_idx: int) -> tuple[float, float]:
        """Return `(start_s, end_s)` for one chapter."""

        chapter = self._require_chapter(self.load(audiobook_id), chapter_idx)
        return chapter.start_s, chapter.end_s

    def load_chapter(self, audiobook_id: str, allowed_idx: int) -> ChapterContent:
        """Select the allowed chapter and only the segments belonging to it.

        Raises:
            NotFoundError: If no chapter has `idx == allowed_idx`.
            EmptyContentError: If the chapter has no segments.
        """

        transcript = self.load(audiobook_id)
        chapter = self._require_chapter(transcript, allowed_idx)
        segments = sorted(
            (segment for segment in transcript.segments if segment.chapter_idx == allowed_idx),
            key=lambda segment: segment.start_s,
        )
        if not segments:
            present = sorted({segment.chapter_idx for segment in transcript.segments})
            raise EmptyContentError(
                f"No segments found for chapter {allowed_idx}. Chapters with content: "
                f"{', '.join(str(index) for index in present)}.",
                stage="load",
                hint="Re-ingest the transcript so every chapter has segments.",
            )
        return ChapterContent(chapter=chapter, segments=tuple(segments))

    def load_prior_summaries(self, audiobook_id: str, allowed_idx: int) -> list[PriorSummary]:
        """Return up to the most recent summaries strictly before `allowed_idx`.

        Failures are non-fatal: they are logged and reported as no summaries.
        """

        if allowed_idx <= 1 or self.summary_store is None:
            return []
        try:
            summaries = self.summary_store.load_summaries(audiobook_id)
        except Exception as exc:
            if self._run_logger is not None:
                self._run_logger.log_warning(
                    "load",
                    "summaries_unavailable",
                    audiobook=audiobook_id,
                    error_type=type(exc).__name__,
                )
            return []

        window_start = max(0, allowed_idx - self.prior_summary_window)
        return [
            summary
            for summary in summaries
            if window_start <= summary.idx < allowed_idx
        ][-self.prior_summary_window :]

    def load_compressed_text(self, audiobook_id: str, chapter_idx: int) -> str | None:
        """Return pre-computed condensed chapter text, or `None` when absent."""

        if self.summary_store is None:
            return None
        try:
            return self.summary_store.load_compressed(audiobook_id, chapter_idx)
        except Exception as exc:
            if self._run_logger is not None:
                self._run_logger.log_warning(
                    "load",
                    "compressed_unavailable",
                    audiobook=audiobook_id,
                    error_type=type(exc).__name__,
                )
            return None

    @staticmethod
    def _require_chapter(transcript: Transcript, chapter_idx: int) -> Chapter:
        chapter = transcript.chapter(chapter_idx)
        if chapter is None:
            available = ", ".join(str(item.idx) for item in transcript.sorted_chapters())
            raise NotFoundError(
                f"Chapter with idx {chapter_idx} not found. Available chapters: {available}.",
                stage="load",
                hint="Check the playback chapter and listener progress indices.",
            )
        return chapter
