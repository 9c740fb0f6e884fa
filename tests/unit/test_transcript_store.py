"""Unit tests for transcript loading, chapter selection, and sidecar summaries."""

from __future__ import annotations

import io
import json
from pathlib import Path
import random

import pytest

from chapterqa.errors import EmptyContentError, NotFoundError, ValidationError
from chapterqa.io.sidecar_store import SidecarStore
from chapterqa.io.transcript_store import TranscriptStore, transcript_from_payload
from chapterqa.models.datatypes import PriorSummary
from chapterqa.telemetry.logger import RunLogger
from tests.support import summaries_payload, transcript_payload, write_dataset


def test_load_chapter_returns_only_segments_of_that_chapter(transcript_store: TranscriptStore) -> None:
    """Every chapter load should contain only its own segments in start order."""

    for idx in range(1, 6):
        chapter = transcript_store.load_chapter("lighthouse", idx)
        assert chapter.idx == idx
        assert chapter.segments
        assert all(segment.chapter_idx == idx for segment in chapter.segments)
        starts = [segment.start_s for segment in chapter.segments]
        assert starts == sorted(starts)


def test_load_chapter_sorts_shuffled_segments(tmp_path: Path) -> None:
    """Segments stored out of order should be returned ascending by `start_s`."""

    payload = transcript_payload(chapter_count=2, segments_per_chapter=6)
    random.Random(7).shuffle(payload["segments"])
    write_dataset(tmp_path, payload=payload)

    chapter = TranscriptStore(tmp_path).load_chapter("lighthouse", 2)

    assert [segment.start_s for segment in chapter.segments] == [
        600.0,
        700.0,
        800.0,
        900.0,
        1000.0,
        1100.0,
    ]


def test_missing_dataset_raises_not_found(tmp_path: Path) -> None:
    """Unknown audiobook ids should raise `NotFoundError` at the load stage."""

    with pytest.raises(NotFoundError) as exc_info:
        TranscriptStore(tmp_path).load("missing-book")

    assert exc_info.value.stage == "load"
    assert "missing-book" in exc_info.value.detail


def test_store_without_directory_requires_registration() -> None:
    """Stores without a datasets directory should only serve registered transcripts."""

    store = TranscriptStore()
    with pytest.raises(NotFoundError):
        store.load("lighthouse")

    store.register("lighthouse", transcript_from_payload(transcript_payload(), "memory"))
    assert [chapter.idx for chapter in store.chapters("lighthouse")] == [1, 2, 3, 4, 5]
    assert store.total_duration("lighthouse") == 3000.0
    assert store.chapter_bounds("lighthouse", 2) == (600.0, 1200.0)


def test_invalid_json_dataset_raises_validation_error(tmp_path: Path) -> None:
    """Malformed JSON should be reported as a dataset validation failure."""

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ValidationError, match="invalid JSON"):
        TranscriptStore(tmp_path).load("broken")


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda payload: payload.update(chapters=[]), "`chapters` must be a non-empty list"),
        (lambda payload: payload.update(segments=[]), "`segments` must be a non-empty list"),
        (lambda payload: payload["segments"][0].update(chapter_idx=99), "unknown chapter 99"),
        (lambda payload: payload["chapters"][1].update(end_s=600.0), "`end_s` greater"),
        (lambda payload: payload["chapters"][1].update(idx=1), "duplicate chapter index 1"),
        (lambda payload: payload.pop("source"), "missing required field"),
    ],
)
def test_dataset_shape_violations_raise_validation_error(mutate, message: str) -> None:
    """Structural dataset violations should raise `ValidationError` with a reason."""

    payload = transcript_payload(chapter_count=3)
    mutate(payload)

    with pytest.raises(ValidationError, match=message):
        transcript_from_payload(payload, "`book.json`")


def test_unknown_chapter_and_empty_chapter_errors(tmp_path: Path) -> None:
    """Missing chapters raise `NotFoundError`; chapters without segments raise `EmptyContentError`."""

    payload = transcript_payload(chapter_count=3)
    payload["segments"] = [item for item in payload["segments"] if item["chapter_idx"] != 3]
    write_dataset(tmp_path, payload=payload)
    store = TranscriptStore(tmp_path)

    with pytest.raises(NotFoundError, match="idx 7 not found"):
        store.load_chapter("lighthouse", 7)
    with pytest.raises(EmptyContentError, match="No segments found for chapter 3"):
        store.load_chapter("lighthouse", 3)


def test_prior_summaries_are_strictly_before_allowed_chapter(
    transcript_store: TranscriptStore,
) -> None:
    """Summaries should cover at most three chapters strictly before the allowed one."""

    assert transcript_store.load_prior_summaries("lighthouse", 1) == []
    assert [item.idx for item in transcript_store.load_prior_summaries("lighthouse", 2)] == [1]
    assert [item.idx for item in transcript_store.load_prior_summaries("lighthouse", 5)] == [
        2,
        3,
        4,
    ]


def test_prior_summary_failure_is_logged_and_treated_as_absent(tmp_path: Path) -> None:
    """A corrupt summaries sidecar should yield no summaries and a warning log line."""

    write_dataset(tmp_path)
    (tmp_path / "lighthouse.summaries.json").write_text("[{\"idx\": 1}]", encoding="utf-8")
    sink = io.StringIO()
    store = TranscriptStore(tmp_path, run_logger=RunLogger(sink=sink))

    assert store.load_prior_summaries("lighthouse", 3) == []
    assert "event=summaries_unavailable" in sink.getvalue()
    assert "level=WARNING" in sink.getvalue()


def test_missing_sidecars_are_tolerated(tmp_path: Path) -> None:
    """Absent sidecar files should mean no summaries and no compressed text."""

    write_dataset(tmp_path)
    store = TranscriptStore(tmp_path)

    assert store.load_prior_summaries("lighthouse", 4) == []
    assert store.load_compressed_text("lighthouse", 2) is None


@pytest.mark.parametrize(
    "compressed",
    [
        {"2": "Condensed chapter two."},
        [{"idx": 1, "text": "Condensed one."}, {"idx": 2, "text": "Condensed chapter two."}],
    ],
)
def test_compressed_sidecar_supports_mapping_and_list_layouts(tmp_path: Path, compressed) -> None:
    """Compressed sidecars may be keyed by index string or listed as `{idx, text}`."""

    write_dataset(tmp_path, compressed=compressed)
    store = TranscriptStore(tmp_path)

    assert store.load_compressed_text("lighthouse", 2) == "Condensed chapter two."
    assert store.load_compressed_text("lighthouse", 5) is None


def test_sidecar_store_saves_summaries_sorted_by_index(tmp_path: Path) -> None:
    """Saved summaries should load back sorted by chapter index."""

    sidecar = SidecarStore(tmp_path)
    summaries = [
        PriorSummary(idx=int(item["idx"]), title=item["title"], summary=item["summary"])
        for item in reversed(summaries_payload(3))
    ]

    assert sidecar.load_summaries("lighthouse") == []
    path = sidecar.save_summaries("lighthouse", summaries)

    assert path.name == "lighthouse.summaries.json"
    assert [item["idx"] for item in json.loads(path.read_text(encoding="utf-8"))] == [1, 2, 3]
    assert [item.idx for item in sidecar.load_summaries("lighthouse")] == [1, 2, 3]
