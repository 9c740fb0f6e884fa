"""On-demand chapter compression for explicit `compressed` requests."""

from __future__ import annotations

from ..cancellation import CancellationToken
from ..errors import UpstreamServiceError
from ..models.datatypes import ChapterContent, ChatMessage
from .cache import ResponseCache
from .completion import CompletionService
from .prompts import PromptLibrary

MAX_COMPRESSED_TOKENS = 9000


class ChapterCompressor:
    """Condense one allowed chapter through the completion collaborator.

    Only the allowed chapter's own segment text is sent, so the condensed form
    can never contain later material. Results are cached per model, audiobook
    and chapter.
    """

    def __init__(
        self,
        completion: CompletionService,
        *,
        prompts: PromptLibrary | None = None,
        cache: ResponseCache | None = None,
        temperature: float = 0.2,
    ) -> None:
        self.completion = completion
        self.prompts = prompts if prompts is not None else PromptLibrary()
        self.cache = cache if cache is not None else ResponseCache()
        self.temperature = temperature

    @staticmethod
    def target_tokens(full_threshold_tokens: int) -> int:
        return max(1, min(MAX_COMPRESSED_TOKENS, full_threshold_tokens))

    async def compress(
        self,
        audiobook_id: str,
        chapter: ChapterContent,
        full_threshold_tokens: int,
        cancel_token: CancellationToken,
    ) -> str:
        """Return condensed chapter text, raising `UpstreamServiceError` on failure."""

        target = self.target_tokens(full_threshold_tokens)
        cache_key = ResponseCache.make_key(
            model=self.completion.model,
            operation="compress",
            input_identity={
                "audiobook": audiobook_id,
                "chapter": chapter.idx,
                "target": target,
            },
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        content = (
            f"Chapter {chapter.idx}: {chapter.title}\n\n"
            f"{chapter.text()}"
        )
        condensed = await self.completion.complete(
            system=self.prompts.compress_system_prompt(target),
            messages=[ChatMessage(role="user", content=content)],
            temperature=self.temperature,
            cancel_token=cancel_token,
            stage="compress",
        )
        condensed = condensed.strip()
        if not condensed:
            raise UpstreamServiceError(
                f"Chapter {chapter.idx} compression returned no text.",
                stage="compress",
                hint="Retry, or ask again in `focused` mode.",
            )
        self.cache.set(cache_key, condensed)
        return condensed
