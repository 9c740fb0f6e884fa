"""Async completion collaborator used by every LLM-backed stage.

Responsibilities:
- Define the `CompletionService` protocol the pipeline depends on.
- Run the blocking OpenAI chat client on a worker thread, raced against the
  request's cancellation token.
- Map provider failures into stage-aware `UpstreamServiceError` diagnostics.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, Sequence

from ..cancellation import CancellationToken
from ..errors import UpstreamServiceError
from ..models.datatypes import ChatMessage
from .openai_client import OpenAIChatClient, OpenAIProviderError


class CompletionService(Protocol):
    """Chat-completion collaborator returning assistant text."""

    model: str

    async def complete(
        self,
        *,
        system: str,
        messages: Sequence[ChatMessage],
        temperature: float,
        cancel_token: CancellationToken,
        stage: str = "answer",
    ) -> str:
        """Return assistant text or raise `UpstreamServiceError`/`RequestCancelledError`."""


def provider_error_detail(stage: str, exc: OpenAIProviderError) -> str:
    """Build concise stage-scoped detail text for provider-backed failures."""

    mapping = {
        "invalid_api_key": "Provider authentication failed for OpenAI API credentials.",
        "insufficient_quota": "Provider quota is insufficient for this OpenAI request.",
        "invalid_model": "Provider rejected the configured model for this request.",
        "timeout": "Provider request timed out before completion.",
        "transport": "Provider request failed due to a transport/network error.",
    }
    detail = mapping.get(exc.failure_kind, str(exc))
    if stage == "retrieve":
        return f"Keyword extraction failed: {detail}"
    return detail


def provider_error_hint(stage: str, exc: OpenAIProviderError) -> str:
    """Build actionable user hints for stage-specific provider failure kinds."""

    kind = exc.failure_kind
    if kind == "invalid_api_key":
        return "Set `OPENAI_API_KEY` or pass a one-time `--api-key`."
    if kind == "insufficient_quota":
        return "Check OpenAI billing/quota for this project, then retry the question."
    if kind == "invalid_model":
        stage_model_hint = {
            "retrieve": "Set `keyword_model` (or `CHAPTERQA_KEYWORD_MODEL`) to an available chat model.",
            "answer": "Set `answer_model` (or `CHAPTERQA_ANSWER_MODEL`) to an available chat model.",
        }
        return stage_model_hint.get(stage, "Use a valid chat model identifier.")
    if kind == "timeout":
        return "Retry the question. If timeouts persist, verify network stability."
    if kind == "transport":
        return "Check internet/proxy connectivity and retry the question."
    if stage == "compress":
        return "Retry, or ask again in `focused` mode to skip chapter compression."
    return "Verify API key and model configuration, then retry."


class OpenAICompletionService:
    """`CompletionService` backed by `OpenAIChatClient` on a worker thread."""

    def __init__(
        self,
        client: OpenAIChatClient,
        model: str,
        *,
        max_tokens: int | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(
        self,
        *,
        system: str,
        messages: Sequence[ChatMessage],
        temperature: float,
        cancel_token: CancellationToken,
        stage: str = "answer",
    ) -> str:
        """Request one completion; returns promptly if `cancel_token` fires.

        The worker thread itself is not interruptible; its eventual result is
        discarded once the token has fired.
        """

        work = asyncio.to_thread(
            self.client.chat_completion_text,
            model=self.model,
            system_prompt=system,
            messages=list(messages),
            temperature=temperature,
            max_tokens=self.max_tokens,
        )
        try:
            return await cancel_token.guard(work, stage=stage)
        except OpenAIProviderError as exc:
            raise UpstreamServiceError(
                provider_error_detail(stage, exc),
                stage=stage,
                hint=provider_error_hint(stage, exc),
            ) from exc
