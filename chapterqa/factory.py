"""Component factory helpers for building a configured pipeline.

Responsibilities:
- Resolve configuration values to concrete transport, store, and stage objects.
- Keep the CLI and embedding front-ends independent from class construction.
"""

from __future__ import annotations

from collections.abc import Callable

from .config import ChapterQAConfig
from .io.transcript_store import TranscriptStore
from .llm.answerer import CompletionInvoker
from .llm.cache import ResponseCache
from .llm.completion import CompletionService, OpenAICompletionService
from .llm.compressor import ChapterCompressor
from .llm.focused_retriever import FocusedRetriever
from .llm.note_taker import NoteTaker
from .llm.openai_client import OpenAIChatClient
from .llm.prompts import PromptLibrary
from .llm.rate_limiter import RateLimiter
from .pipeline.coordinator import RequestCoordinator
from .pipeline.orchestrator import ChapterQAPipeline
from .telemetry.logger import RunLogger
from .text.budget_planner import BudgetPlanner
from .text.context_assembler import ContextAssembler
from .text.paragraphs import Paragraphizer


class ComponentFactory:
    """Factory for config-driven pipeline components."""

    @staticmethod
    def create_chat_client(config: ChapterQAConfig) -> OpenAIChatClient:
        return OpenAIChatClient(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout_seconds=config.http_timeout_seconds,
            rate_limiter=RateLimiter(min_interval_seconds=config.min_request_interval_seconds),
        )

    @staticmethod
    def create_completion_service(
        config: ChapterQAConfig,
        model: str,
        client: OpenAIChatClient | None = None,
    ) -> OpenAICompletionService:
        """Create a completion service for one model, sharing `client` when given."""

        return OpenAICompletionService(
            client if client is not None else ComponentFactory.create_chat_client(config),
            model,
        )

    @staticmethod
    def create_transcript_store(
        config: ChapterQAConfig,
        run_logger: RunLogger | None = None,
    ) -> TranscriptStore:
        return TranscriptStore(
            config.datasets_dir,
            run_logger=run_logger,
            prior_summary_window=config.prior_summary_window,
        )

    @staticmethod
    def create_pipeline(
        config: ChapterQAConfig,
        *,
        transcript_store: TranscriptStore | None = None,
        answer_completion: CompletionService | None = None,
        keyword_completion: CompletionService | None = None,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> ChapterQAPipeline:
        """Create a pipeline whose planner, paragraphizer, and temperatures follow `config`.

        Completion services default to OpenAI-backed services sharing one HTTP
        client and rate limiter.
        """

        if answer_completion is None or keyword_completion is None:
            client = ComponentFactory.create_chat_client(config)
            if answer_completion is None:
                answer_completion = ComponentFactory.create_completion_service(
                    config, config.answer_model, client
                )
            if keyword_completion is None:
                keyword_completion = ComponentFactory.create_completion_service(
                    config, config.keyword_model, client
                )

        store = (
            transcript_store
            if transcript_store is not None
            else ComponentFactory.create_transcript_store(config, run_logger)
        )
        planner = BudgetPlanner(
            chars_per_token=config.chars_per_token,
            reserved_tokens=config.reserved_tokens,
            safety_ratio=config.safety_ratio,
        )
        prompts = PromptLibrary()
        cache = ResponseCache()
        return ChapterQAPipeline(
            store,
            answer_completion,
            planner=planner,
            assembler=ContextAssembler(Paragraphizer(config.paragraph_soft_chars), prompts),
            cache=cache,
            retriever=FocusedRetriever(
                keyword_completion,
                planner=planner,
                prompts=prompts,
                cache=cache,
                temperature=config.keyword_temperature,
                run_logger=run_logger,
            ),
            compressor=ChapterCompressor(answer_completion, prompts=prompts, cache=cache),
            invoker=CompletionInvoker(answer_completion, temperature=config.answer_temperature),
            run_logger=run_logger,
            stage_progress_callback=stage_progress_callback,
        )

    @staticmethod
    def create_coordinator(
        config: ChapterQAConfig,
        pipeline: ChapterQAPipeline,
        run_logger: RunLogger | None = None,
    ) -> RequestCoordinator:
        return RequestCoordinator(
            pipeline,
            timeout_seconds=config.request_timeout_seconds,
            run_logger=run_logger,
        )

    @staticmethod
    def create_note_taker(
        config: ChapterQAConfig,
        completion: CompletionService | None = None,
        run_logger: RunLogger | None = None,
    ) -> NoteTaker:
        return NoteTaker(
            completion
            if completion is not None
            else ComponentFactory.create_completion_service(config, config.answer_model),
            run_logger=run_logger,
        )
