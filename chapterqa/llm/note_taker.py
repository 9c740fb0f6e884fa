"""High-level note taking for short listener discussions."""

from __future__ import annotations

from ..cancellation import CancellationToken
from ..errors import ChapterQAError, RequestCancelledError
from ..models.datatypes import ChatMessage
from ..telemetry.logger import RunLogger
from .completion import CompletionService
from .prompts import PromptLibrary

NOTES_UNAVAILABLE = "Unable to generate notes at this time."


class NoteTaker:
    """Turn a discussion transcript into Topic/Realizations/Takeaways notes."""

    def __init__(
        self,
        completion: CompletionService,
        *,
        prompts: PromptLibrary | None = None,
        temperature: float = 0.2,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.completion = completion
        self.prompts = prompts if prompts is not None else PromptLibrary()
        self.temperature = temperature
        self._run_logger = run_logger

    async def take_notes(
        self,
        discussion_transcript: str,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Return generated notes, or `NOTES_UNAVAILABLE` when generation fails.

        Raises:
            RequestCancelledError: If `cancel_token` fires; cancellation is not degraded.
        """

        token = cancel_token if cancel_token is not None else CancellationToken()
        try:
            notes = await self.completion.complete(
                system=self.prompts.notes_system_prompt(),
                messages=[ChatMessage(role="user", content=discussion_transcript)],
                temperature=self.temperature,
                cancel_token=token,
                stage="notes",
            )
        except RequestCancelledError:
            raise
        except ChapterQAError as exc:
            if self._run_logger is not None:
                self._run_logger.log_warning("notes", "notes_unavailable", error_type=type(exc).__name__)
            return NOTES_UNAVAILABLE

        notes = notes.strip()
        if not notes:
            return NOTES_UNAVAILABLE
        if self._run_logger is not None:
            self._run_logger.log_event("notes", "notes_generated", chars=len(notes))
        return notes
