"""Token-budget planning for chapter packing.

Responsibilities:
- Estimate chapter token cost with a fixed character-to-token ratio.
- Select a packing mode from an explicit hint or from explicit auto thresholds.
"""

from __future__ import annotations

import math

from ..models.datatypes import BudgetPlan, ChapterContent, ModeHint, PackingMode


class BudgetPlanner:
    """Plan deterministic packing modes from chapter size and token budget.

    Auto mode reserves headroom for system prompts and the answer
    (`RESERVED_TOKENS`, capped at a quarter of the budget) and packs the full
    chapter only when its estimate fits under `FULL_MODE_SAFETY_RATIO` of the
    remaining budget.
    """

    CHARS_PER_TOKEN = 4
    RESERVED_TOKENS = 20000
    MAX_RESERVED_RATIO = 0.25
    FULL_MODE_SAFETY_RATIO = 0.8

    def __init__(
        self,
        chars_per_token: int = CHARS_PER_TOKEN,
        reserved_tokens: int = RESERVED_TOKENS,
        safety_ratio: float = FULL_MODE_SAFETY_RATIO,
    ) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be a positive integer.")
        if reserved_tokens < 0:
            raise ValueError("reserved_tokens must not be negative.")
        if not 0.0 < safety_ratio <= 1.0:
            raise ValueError("safety_ratio must be within (0, 1].")
        self.chars_per_token = chars_per_token
        self.reserved_tokens = reserved_tokens
        self.safety_ratio = safety_ratio

    def estimate_tokens(self, text: str) -> int:
        """Return `ceil(len(text) / chars_per_token)`."""

        return math.ceil(len(text) / self.chars_per_token)

    def full_threshold(self, token_budget: int) -> int:
        """Return the largest chapter estimate that is still packed in full."""

        reserved = min(self.reserved_tokens, int(token_budget * self.MAX_RESERVED_RATIO))
        return int((token_budget - reserved) * self.safety_ratio)

    def plan(
        self,
        chapter: ChapterContent,
        token_budget: int,
        mode_hint: ModeHint,
        has_compressed: bool,
    ) -> BudgetPlan:
        """Estimate chapter cost and choose a packing mode."""

        estimated = self.estimate_tokens(chapter.text())
        return self.decide(
            estimated_tokens=estimated,
            token_budget=token_budget,
            mode_hint=mode_hint,
            has_compressed=has_compressed,
        )

    def decide(
        self,
        *,
        estimated_tokens: int,
        token_budget: int,
        mode_hint: ModeHint,
        has_compressed: bool,
    ) -> BudgetPlan:
        """Choose a packing mode for an already-estimated chapter."""

        threshold = self.full_threshold(token_budget)
        explicit_mode = mode_hint.as_packing_mode()
        if explicit_mode is not None:
            mode = explicit_mode
            reason = "hint"
        elif estimated_tokens <= threshold:
            mode = PackingMode.FULL
            reason = "fits_budget"
        elif has_compressed:
            mode = PackingMode.COMPRESSED
            reason = "over_budget_compressed_available"
        else:
            mode = PackingMode.FOCUSED
            reason = "over_budget_no_compressed"

        return BudgetPlan(
            estimated_tokens=estimated_tokens,
            token_budget=token_budget,
            full_threshold_tokens=threshold,
            has_compressed=has_compressed,
            mode=mode,
            reason=reason,
        )
