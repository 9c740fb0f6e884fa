"""Unit tests for token estimation and packing-mode selection."""

from __future__ import annotations

import pytest

from chapterqa.models.datatypes import Chapter, ChapterContent, ModeHint, PackingMode, Segment
from chapterqa.text.budget_planner import BudgetPlanner


def _chapter(*texts: str) -> ChapterContent:
    segments = tuple(
        Segment(chapter_idx=1, start_s=float(position), end_s=float(position + 1), text=text)
        for position, text in enumerate(texts)
    )
    return ChapterContent(
        chapter=Chapter(idx=1, title="One", start_s=0.0, end_s=float(len(texts))),
        segments=segments,
    )


def test_estimate_tokens_rounds_up_character_count() -> None:
    """Estimates should use `ceil(len(text) / 4)`."""

    planner = BudgetPlanner()

    assert planner.estimate_tokens("") == 0
    assert planner.estimate_tokens("abcd") == 1
    assert planner.estimate_tokens("abcde") == 2


def test_chapter_estimate_counts_joining_spaces() -> None:
    """Chapter text joins segments with single spaces before estimating."""

    planner = BudgetPlanner()
    plan = planner.plan(_chapter("aaaa", "bbbb"), 180000, ModeHint.AUTO, has_compressed=False)

    assert plan.estimated_tokens == 3


def test_full_threshold_reserves_headroom_and_applies_safety_ratio() -> None:
    """Default thresholds should reserve 20k tokens (capped at a quarter) then take 80%."""

    planner = BudgetPlanner()

    assert planner.full_threshold(180000) == 128000
    assert planner.full_threshold(1000) == 600


@pytest.mark.parametrize(
    ("estimated", "has_compressed", "mode", "reason"),
    [
        (50000, False, PackingMode.FULL, "fits_budget"),
        (128000, True, PackingMode.FULL, "fits_budget"),
        (300000, True, PackingMode.COMPRESSED, "over_budget_compressed_available"),
        (300000, False, PackingMode.FOCUSED, "over_budget_no_compressed"),
    ],
)
def test_auto_mode_selection(
    estimated: int,
    has_compressed: bool,
    mode: PackingMode,
    reason: str,
) -> None:
    """Auto planning should pick full, then compressed, then focused packing."""

    plan = BudgetPlanner().decide(
        estimated_tokens=estimated,
        token_budget=180000,
        mode_hint=ModeHint.AUTO,
        has_compressed=has_compressed,
    )

    assert plan.mode is mode
    assert plan.reason == reason
    assert plan.full_threshold_tokens == 128000


@pytest.mark.parametrize(
    ("hint", "mode"),
    [
        (ModeHint.FULL, PackingMode.FULL),
        (ModeHint.COMPRESSED, PackingMode.COMPRESSED),
        (ModeHint.FOCUSED, PackingMode.FOCUSED),
    ],
)
def test_explicit_hint_is_honored_regardless_of_size(hint: ModeHint, mode: PackingMode) -> None:
    """A non-auto mode hint should override the size-based decision."""

    plan = BudgetPlanner().decide(
        estimated_tokens=400000,
        token_budget=1000,
        mode_hint=hint,
        has_compressed=False,
    )

    assert plan.mode is mode
    assert plan.reason == "hint"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"chars_per_token": 0},
        {"reserved_tokens": -1},
        {"safety_ratio": 0.0},
        {"safety_ratio": 1.5},
    ],
)
def test_invalid_planner_settings_raise_value_error(kwargs: dict[str, float]) -> None:
    """Planner construction should reject nonsensical estimation settings."""

    with pytest.raises(ValueError):
        BudgetPlanner(**kwargs)
