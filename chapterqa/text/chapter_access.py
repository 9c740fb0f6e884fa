"""Spoiler-gate helpers for chapter access.

Responsibilities:
- Compute the highest chapter index a listener may be shown.
- Map a playback position in seconds to the chapter under the playhead.
"""

from __future__ import annotations

from typing import Sequence

from ..models.datatypes import Chapter


def allowed_chapter_index(playback_chapter_idx: int, user_progress_idx: int) -> int:
    """Return the maximum chapter index whose content may be disclosed.

    Scrubbing playback ahead of real progress and progress reported ahead of
    playback are both capped by taking the minimum of the two.

    Args:
        playback_chapter_idx: 1-based chapter currently under the playhead.
        user_progress_idx: 1-based furthest chapter the listener has reached.

    Returns:
        `max(1, min(playback_chapter_idx, user_progress_idx))`.
    """

    return max(1, min(int(playback_chapter_idx), int(user_progress_idx)))


def resolve_chapter_from_position(chapters: Sequence[Chapter], position_s: float) -> int:
    """Return the index of the chapter containing a playback position.

    Positions before the first chapter resolve to the first chapter; positions at
    or beyond the end of the last chapter resolve to the last chapter. A position
    in a gap between chapters resolves to the preceding chapter.

    Raises:
        ValueError: If no chapters are available.
    """

    ordered = sorted(chapters, key=lambda chapter: chapter.idx)
    if not ordered:
        raise ValueError("No chapters are available for position lookup.")

    resolved = ordered[0].idx
    for chapter in ordered:
        if chapter.start_s > position_s:
            break
        resolved = chapter.idx
    return resolved
