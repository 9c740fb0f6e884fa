"""Core datatypes shared across chapterqa modules.

Responsibilities:
- Represent immutable records exchanged between pipeline stages.
- Validate the request contract before any stage runs.

Key types:
- `Transcript`, `TranscriptSource`, `Chapter`, `Segment`, `Paragraph`,
  `PriorSummary`, `ChapterContent`, `QARequest`, `BudgetPlan`, `RequestState`,
  and `AnswerResult`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import ValidationError
from ..parsing import is_safe_dataset_id, parse_permissive_boolean


MIN_TOKEN_BUDGET = 1000
MAX_TOKEN_BUDGET = 500000
DEFAULT_TOKEN_BUDGET = 180000


class PackingMode(str, Enum):
    """Strategy governing how much chapter content goes into the prompt."""

    FULL = "full"
    COMPRESSED = "compressed"
    FOCUSED = "focused"


class ModeHint(str, Enum):
    """Caller-supplied packing preference; `auto` defers to the budget planner."""

    AUTO = "auto"
    FULL = "full"
    COMPRESSED = "compressed"
    FOCUSED = "focused"

    def as_packing_mode(self) -> PackingMode | None:
        """Return the explicit packing mode, or `None` for `auto`."""

        if self is ModeHint.AUTO:
            return None
        return PackingMode(self.value)


@dataclass(frozen=True, slots=True)
class TranscriptSource:
    """Metadata describing where a transcript came from.

    Attributes:
        platform: Source platform (`youtube`, `spotify`, `audible`, `http`, `file`).
        title: Human-readable audiobook title.
        duration_s: Total duration in seconds.
        rights: Usage-rights marker carried from ingestion.
        captions_kind: Caption provenance (`human`, `auto`, `asr`).
        language: Primary language code.
    """

    platform: str
    title: str
    duration_s: float
    rights: str
    captions_kind: str
    language: str = "en"
    video_id: str | None = None
    channel: str | None = None
    asr_provider: str | None = None
    asr_model: str | None = None


@dataclass(frozen=True, slots=True)
class Chapter:
    """A bounded, ordinally indexed time range of the audiobook."""

    idx: int
    title: str
    start_s: float
    end_s: float


@dataclass(frozen=True, slots=True)
class Segment:
    """Smallest timestamped transcript unit, owned by exactly one chapter."""

    chapter_idx: int
    start_s: float
    end_s: float
    text: str


@dataclass(frozen=True, slots=True)
class Paragraph:
    """Derived grouping of consecutive segment text, built per request."""

    start_s: float
    end_s: float
    text: str


@dataclass(frozen=True, slots=True)
class PriorSummary:
    """Summary of one completed chapter preceding the allowed chapter."""

    idx: int
    title: str
    summary: str


@dataclass(frozen=True, slots=True)
class Transcript:
    """Canonical transcript with chapters sorted by index."""

    source: TranscriptSource
    chapters: tuple[Chapter, ...]
    segments: tuple[Segment, ...]

    def sorted_chapters(self) -> list[Chapter]:
        """Return chapters ordered by index."""

        return sorted(self.chapters, key=lambda chapter: chapter.idx)

    def chapter(self, idx: int) -> Chapter | None:
        """Return the chapter with the given index, if present."""

        for chapter in self.chapters:
            if chapter.idx == idx:
                return chapter
        return None

    @property
    def total_duration_s(self) -> float:
        """Return the source duration, falling back to the last chapter end."""

        if self.source.duration_s > 0:
            return self.source.duration_s
        return max(chapter.end_s for chapter in self.chapters)


@dataclass(frozen=True, slots=True)
class ChapterContent:
    """Chapter selected for one request together with the content to pack.

    Attributes:
        chapter: Allowed chapter record.
        segments: Segments of this chapter only, ascending by `start_s`.
        compressed_text: Condensed chapter text when packing in compressed mode.
    """

    chapter: Chapter
    segments: tuple[Segment, ...]
    compressed_text: str | None = None

    @property
    def idx(self) -> int:
        return self.chapter.idx

    @property
    def title(self) -> str:
        return self.chapter.title

    def text(self) -> str:
        """Return chapter text as segment texts joined by single spaces."""

        return " ".join(segment.text for segment in self.segments)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One chat message sent to the completion collaborator."""

    role: str
    content: str

    def as_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class QARequest:
    """Pipeline request contract for one listener question.

    Attributes:
        audiobook_id: Dataset identity of the audiobook transcript.
        question: Listener question, spoken or typed.
        playback_chapter_idx: Chapter currently under the playhead (1-based).
        user_progress_idx: Furthest chapter the listener has actually reached.
        mode_hint: Packing preference; `auto` lets the budget planner decide.
        token_budget: Prompt token budget in `[1000, 500000]`.
        include_prior_summaries: Whether to add earlier-chapter summaries.
        user_memory: Optional listener notes added to the prompt.
    """

    audiobook_id: str
    question: str
    playback_chapter_idx: int
    user_progress_idx: int = 1
    mode_hint: ModeHint = ModeHint.AUTO
    token_budget: int = DEFAULT_TOKEN_BUDGET
    include_prior_summaries: bool = True
    user_memory: str | None = None

    def validate(self) -> None:
        """Validate request fields and raise `ValidationError` on violations."""

        errors: list[str] = []
        if not isinstance(self.audiobook_id, str) or not self.audiobook_id.strip():
            errors.append("`audiobook_id` is required")
        elif not is_safe_dataset_id(self.audiobook_id.strip()):
            errors.append("`audiobook_id` cannot contain path separators or start with a dot")
        if not isinstance(self.question, str) or not self.question.strip():
            errors.append("`question` is required and cannot be empty")
        if not _is_positive_int(self.playback_chapter_idx):
            errors.append("`playback_chapter_idx` must be a positive integer")
        if not _is_positive_int(self.user_progress_idx):
            errors.append("`user_progress_idx` must be a positive integer")
        if not isinstance(self.mode_hint, ModeHint):
            errors.append("`mode_hint` must be one of auto, full, compressed, focused")
        if (
            isinstance(self.token_budget, bool)
            or not isinstance(self.token_budget, int)
            or not MIN_TOKEN_BUDGET <= self.token_budget <= MAX_TOKEN_BUDGET
        ):
            errors.append(
                f"`token_budget` must be an integer between {MIN_TOKEN_BUDGET} "
                f"and {MAX_TOKEN_BUDGET}"
            )
        if errors:
            raise ValidationError(
                "; ".join(errors) + ".",
                stage="request",
                hint="Fix the request fields and resubmit the question.",
            )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> QARequest:
        """Build a validated request from the camelCase JSON contract."""

        raw_mode = payload.get("modeHint", ModeHint.AUTO.value)
        try:
            mode_hint = ModeHint(raw_mode)
        except ValueError as exc:
            raise ValidationError(
                f"Unsupported `modeHint` value `{raw_mode}`.",
                stage="request",
                hint="Use one of auto, full, compressed, focused.",
            ) from exc
        raw_include = payload.get("includePriorSummaries", True)
        include_prior_summaries = parse_permissive_boolean(raw_include)
        if include_prior_summaries is None:
            raise ValidationError(
                f"Unsupported `includePriorSummaries` value `{raw_include}`.",
                stage="request",
                hint="Use true or false.",
            )
        request = cls(
            audiobook_id=payload.get("audiobookId", ""),
            question=payload.get("question", ""),
            playback_chapter_idx=payload.get("playbackChapterIdx", 0),
            user_progress_idx=payload.get("userProgressIdx", 1),
            mode_hint=mode_hint,
            token_budget=payload.get("tokenBudget", DEFAULT_TOKEN_BUDGET),
            include_prior_summaries=include_prior_summaries,
            user_memory=payload.get("userMemory"),
        )
        request.validate()
        return request


@dataclass(frozen=True, slots=True)
class BudgetPlan:
    """Token estimate and packing decision for one chapter.

    Attributes:
        estimated_tokens: Approximate token cost of the full chapter text.
        token_budget: Caller-supplied token budget.
        full_threshold_tokens: Largest chapter estimate still packed in full.
        has_compressed: Whether a pre-computed compressed form exists.
        mode: Selected packing mode.
        reason: Short deterministic explanation of the decision.
    """

    estimated_tokens: int
    token_budget: int
    full_threshold_tokens: int
    has_compressed: bool
    mode: PackingMode
    reason: str


@dataclass(frozen=True, slots=True)
class Citation:
    """Reference from an answer back into the packed chapter content."""

    type: str
    ref: str

    def as_payload(self) -> dict[str, str]:
        return {"type": self.type, "ref": self.ref}


@dataclass(frozen=True, slots=True)
class PlaybackHint:
    """Suggested playback position inside the allowed chapter."""

    chapter_idx: int
    start_s: float

    def as_payload(self) -> dict[str, float | int]:
        return {"chapter_idx": self.chapter_idx, "start_s": self.start_s}


@dataclass(frozen=True, slots=True)
class AnswerResult:
    """Final answer for one request."""

    answer_markdown: str
    citations: tuple[Citation, ...] = field(default_factory=tuple)
    playback_hint: PlaybackHint | None = None
    packing_mode: PackingMode | None = None
    latency_ms: int | None = None

    def as_payload(self) -> dict[str, Any]:
        """Render the response contract JSON shape."""

        payload: dict[str, Any] = {
            "answer_markdown": self.answer_markdown,
            "citations": [citation.as_payload() for citation in self.citations],
        }
        if self.playback_hint is not None:
            payload["playbackHint"] = self.playback_hint.as_payload()
        return payload


@dataclass(frozen=True, slots=True)
class RequestState:
    """Per-request accumulator threaded through pipeline stages.

    Each stage returns a partial update that is merged into a new state; the
    state is discarded when the request resolves or is cancelled.
    """

    request: QARequest
    allowed_idx: int | None = None
    chapter: ChapterContent | None = None
    prior_summaries: tuple[PriorSummary, ...] = field(default_factory=tuple)
    budget_plan: BudgetPlan | None = None
    packing_mode: PackingMode | None = None
    retrieval_fallback: bool = False
    assembled_messages: tuple[ChatMessage, ...] = field(default_factory=tuple)
    paragraph_count: int = 0

    def merge(self, **partial: Any) -> RequestState:
        """Return a new state with one stage's partial output applied."""

        return replace(self, **partial)

    def require_chapter(self) -> ChapterContent:
        if self.chapter is None:
            raise RuntimeError("Chapter not loaded.")
        return self.chapter

    def require_allowed_idx(self) -> int:
        if self.allowed_idx is None:
            raise RuntimeError("Spoiler gate has not run.")
        return self.allowed_idx

    def require_plan(self) -> BudgetPlan:
        if self.budget_plan is None:
            raise RuntimeError("Budget plan not computed.")
        return self.budget_plan


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1
