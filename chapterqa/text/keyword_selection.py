"""Keyword scoring and neighbor-expanded segment selection."""

from __future__ import annotations

from typing import Sequence

from ..models.datatypes import Segment


def score_segment(text: str, keywords: Sequence[str]) -> int:
    """Count case-folded literal occurrences of every keyword in a text."""

    folded = text.casefold()
    score = 0
    for keyword in keywords:
        needle = keyword.casefold()
        if needle:
            score += folded.count(needle)
    return score


def select_indices_by_keywords(segments: Sequence[Segment], keywords: Sequence[str]) -> list[int]:
    """Return sorted unique positions of hit segments plus their direct neighbors."""

    selected: set[int] = set()
    last_position = len(segments) - 1
    for position, segment in enumerate(segments):
        if score_segment(segment.text, keywords) <= 0:
            continue
        selected.add(position)
        if position > 0:
            selected.add(position - 1)
        if position < last_position:
            selected.add(position + 1)
    return sorted(selected)


def select_by_keywords(segments: Sequence[Segment], keywords: Sequence[str]) -> list[Segment]:
    """Return hit segments and their neighbors in original chronological order."""

    return [segments[position] for position in select_indices_by_keywords(segments, keywords)]
