"""Sidecar JSON storage for per-audiobook summaries and condensed chapters.

Responsibilities:
- Locate `<audiobook_id>.summaries.json` and `<audiobook_id>.compressed.json`
  next to the transcript dataset.
- Decode prior-chapter summaries and pre-computed compressed chapter texts.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

from ..errors import ValidationError
from ..models.datatypes import PriorSummary
from ..parsing import is_safe_dataset_id


class SummaryStore(Protocol):
    """Protocol for stores that provide prior summaries and condensed chapters."""

    def load_summaries(self, audiobook_id: str) -> list[PriorSummary]:
        """Return all known chapter summaries for an audiobook."""

    def load_compressed(self, audiobook_id: str, chapter_idx: int) -> str | None:
        """Return pre-computed condensed text for one chapter, if any."""


class SidecarStore:
    """Filesystem-backed sidecar store rooted at the datasets directory."""

    SUMMARIES_SUFFIX = ".summaries.json"
    COMPRESSED_SUFFIX = ".compressed.json"

    def __init__(self, root: Path) -> None:
        """Initialize the store with the datasets root directory."""

        self.root = root

    def summaries_path(self, audiobook_id: str) -> Path:
        return self._sidecar_path(audiobook_id, self.SUMMARIES_SUFFIX)

    def compressed_path(self, audiobook_id: str) -> Path:
        return self._sidecar_path(audiobook_id, self.COMPRESSED_SUFFIX)

    def _sidecar_path(self, audiobook_id: str, suffix: str) -> Path:
        if not is_safe_dataset_id(audiobook_id):
            raise ValidationError(
                f"Audiobook id `{audiobook_id}` is not a valid dataset name.",
                stage="load",
            )
        return self.root / f"{audiobook_id}{suffix}"

    def load_summaries(self, audiobook_id: str) -> list[PriorSummary]:
        """Return summaries sorted by chapter index; missing sidecar yields `[]`."""

        path = self.summaries_path(audiobook_id)
        if not path.exists():
            return []
        payload = self._load_json(path)
        if not isinstance(payload, list):
            raise ValueError(f"Summaries sidecar `{path.name}` must be a JSON list.")

        summaries: list[PriorSummary] = []
        for item in payload:
            if not isinstance(item, dict):
                raise ValueError(f"Summaries sidecar `{path.name}` has a non-object entry.")
            summaries.append(
                PriorSummary(
                    idx=int(item["idx"]),
                    title=str(item.get("title", "")),
                    summary=str(item["summary"]),
                )
            )
        return sorted(summaries, key=lambda summary: summary.idx)

    def load_compressed(self, audiobook_id: str, chapter_idx: int) -> str | None:
        """Return condensed chapter text from list or mapping sidecar layouts."""

        path = self.compressed_path(audiobook_id)
        if not path.exists():
            return None
        payload = self._load_json(path)

        text: Any = None
        if isinstance(payload, dict):
            text = payload.get(str(chapter_idx))
        elif isinstance(payload, list):
            for item in payload:
                if isinstance(item, dict) and int(item.get("idx", -1)) == chapter_idx:
                    text = item.get("text")
                    break
        else:
            raise ValueError(f"Compressed sidecar `{path.name}` must be a list or mapping.")

        if isinstance(text, str) and text.strip():
            return text.strip()
        return None

    def save_summaries(self, audiobook_id: str, summaries: list[PriorSummary]) -> Path:
        """Persist summaries as a sidecar list and return the written path."""

        path = self.summaries_path(audiobook_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = [
            {"idx": summary.idx, "title": summary.title, "summary": summary.summary}
            for summary in sorted(summaries, key=lambda item: item.idx)
        ]
        path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        return path

    @staticmethod
    def _load_json(path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))
