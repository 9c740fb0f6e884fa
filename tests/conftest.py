"""Shared pytest fixtures for the full chapterqa test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from chapterqa.io.transcript_store import TranscriptStore
from tests.support import summaries_payload, write_dataset


@pytest.fixture
def datasets_dir(tmp_path: Path) -> Path:
    """Provide a datasets directory with a five-chapter transcript and summaries."""

    directory = tmp_path / "datasets"
    write_dataset(directory, summaries=summaries_payload())
    return directory


@pytest.fixture
def transcript_store(datasets_dir: Path) -> TranscriptStore:
    """Provide a store rooted at the shared datasets directory."""

    return TranscriptStore(datasets_dir)


@pytest.fixture(autouse=True)
def _isolate_chapterqa_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ambient `CHAPTERQA_*` and API key variables out of tests."""

    for key in list(os.environ):
        if key.startswith("CHAPTERQA_") or key == "OPENAI_API_KEY":
            monkeypatch.delenv(key, raising=False)
