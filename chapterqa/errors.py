"""Domain exceptions for pipeline, coordinator, and CLI diagnostics.

Every error raised by a pipeline stage derives from `ChapterQAError` so callers
can render one stage-aware diagnostic shape. The `kind` class attribute is the
stable, caller-visible error classification.
"""

from __future__ import annotations


class ChapterQAError(RuntimeError):
    """Base error for one failed question-answering request."""

    kind = "error"

    def __init__(
        self,
        detail: str,
        *,
        stage: str | None = None,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped error."""

        super().__init__(detail)
        self.detail = detail
        self.stage = stage
        self.hint = hint


class ValidationError(ChapterQAError):
    """Raised for malformed or out-of-range request or dataset input."""

    kind = "validation"


class ConfigError(ChapterQAError):
    """Raised when runtime configuration cannot be loaded or validated."""

    kind = "config"


class NotFoundError(ChapterQAError):
    """Raised when a dataset or chapter does not exist."""

    kind = "not_found"


class EmptyContentError(ChapterQAError):
    """Raised when the allowed chapter has no usable content."""

    kind = "empty_content"


class UpstreamServiceError(ChapterQAError):
    """Raised when an LLM completion or keyword-extraction call fails."""

    kind = "upstream"


class _ElapsedError(ChapterQAError):
    """Error annotated with the elapsed request time in milliseconds."""

    def __init__(
        self,
        detail: str,
        *,
        elapsed_ms: int,
        stage: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(detail, stage=stage, hint=hint)
        self.elapsed_ms = elapsed_ms


class RequestTimeoutError(_ElapsedError):
    """Raised when a request exceeds the coordinator wall-clock timeout."""

    kind = "timeout"


class RequestCancelledError(_ElapsedError):
    """Raised when a request is cancelled by barge-in or an explicit stop."""

    kind = "cancelled"


GENERIC_APOLOGY = "Sorry, I couldn't answer that right now. Please try again in a moment."


def user_facing_message(exc: BaseException) -> str | None:
    """Return the message a voice front-end should speak for a failed request.

    Cancellation yields `None`: it is an intentional barge-in and the front-end
    should silently restart listening.
    """

    if isinstance(exc, RequestCancelledError):
        return None
    if isinstance(exc, (UpstreamServiceError, RequestTimeoutError)):
        return GENERIC_APOLOGY
    if isinstance(exc, ChapterQAError):
        return exc.detail
    return GENERIC_APOLOGY
