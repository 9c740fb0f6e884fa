"""Pipeline orchestration for spoiler-safe chapter question answering.

Responsibilities:
- Define the stage order: gate, load, plan, optional retrieve/compress,
  assemble, answer.
- Thread one `RequestState` through the stages, merging each stage's output.
- Observe the request's cancellation token at every stage boundary.

Key types:
- `ChapterQAPipeline`: orchestration facade.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from time import monotonic
from typing import Any

from ..cancellation import CancellationToken
from ..io.transcript_store import TranscriptStore
from ..llm.answerer import CompletionInvoker
from ..llm.cache import ResponseCache
from ..llm.completion import CompletionService
from ..llm.compressor import ChapterCompressor
from ..llm.focused_retriever import FocusedRetriever
from ..models.datatypes import (
    AnswerResult,
    PackingMode,
    PriorSummary,
    QARequest,
    RequestState,
)
from ..telemetry.logger import RunLogger
from ..text.budget_planner import BudgetPlanner
from ..text.chapter_access import allowed_chapter_index
from ..text.context_assembler import ContextAssembler
from .telemetry import PipelineTelemetryMixin


class ChapterQAPipeline(PipelineTelemetryMixin):
    """Coordinate all stages for one listener question."""

    def __init__(
        self,
        transcript_store: TranscriptStore,
        completion: CompletionService,
        *,
        planner: BudgetPlanner | None = None,
        assembler: ContextAssembler | None = None,
        cache: ResponseCache | None = None,
        retriever: FocusedRetriever | None = None,
        compressor: ChapterCompressor | None = None,
        invoker: CompletionInvoker | None = None,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        """Wire stage components; defaults share one planner and response cache."""

        self.transcript_store = transcript_store
        self.completion = completion
        self.planner = planner if planner is not None else BudgetPlanner()
        self.assembler = assembler if assembler is not None else ContextAssembler()
        self.cache = cache if cache is not None else ResponseCache()
        self.retriever = (
            retriever
            if retriever is not None
            else FocusedRetriever(
                completion,
                planner=self.planner,
                prompts=self.assembler.prompts,
                cache=self.cache,
                run_logger=run_logger,
            )
        )
        self.compressor = (
            compressor
            if compressor is not None
            else ChapterCompressor(completion, prompts=self.assembler.prompts, cache=self.cache)
        )
        self.invoker = invoker if invoker is not None else CompletionInvoker(completion)
        self._run_logger = run_logger
        self._stage_progress_callback = stage_progress_callback
        self._clock = clock

    async def run(
        self,
        request: QARequest,
        cancel_token: CancellationToken | None = None,
    ) -> AnswerResult:
        """Answer one question using only content up to the allowed chapter.

        Raises:
            ChapterQAError: Any stage failure; the request is aborted.
        """

        started_at = self._clock()
        token = cancel_token if cancel_token is not None else CancellationToken()
        state = self.prepare(request, token)
        plan = state.require_plan()

        if plan.mode is PackingMode.FOCUSED:
            token.raise_if_cancelled("retrieve")
            retrieved = await self._run_async_stage(
                "retrieve",
                lambda: self._retrieve(state, token),
                chapter=state.allowed_idx,
            )
            state = state.merge(**retrieved)
        elif plan.mode is PackingMode.COMPRESSED and not state.require_chapter().compressed_text:
            token.raise_if_cancelled("compress")
            compressed = await self._run_async_stage(
                "compress",
                lambda: self._compress(state, token),
                chapter=state.allowed_idx,
            )
            state = state.merge(**compressed)

        token.raise_if_cancelled("assemble")
        state = state.merge(**self._run_stage("assemble", lambda: self._assemble(state)))

        token.raise_if_cancelled("answer")
        result = await self._run_async_stage(
            "answer",
            lambda: self.invoker.answer(
                state.assembled_messages,
                state.require_chapter(),
                plan.mode,
                token,
                paragraph_count=state.paragraph_count,
            ),
        )
        latency_ms = int(round((self._clock() - started_at) * 1000))
        if self._run_logger is not None:
            self._run_logger.log_event(
                "answer",
                "answered",
                chapter=state.allowed_idx,
                citations=len(result.citations),
                latency_ms=latency_ms,
                mode=plan.mode.value,
            )
        return replace(result, latency_ms=latency_ms)

    def prepare(
        self,
        request: QARequest,
        cancel_token: CancellationToken | None = None,
    ) -> RequestState:
        """Run the deterministic gate/load/plan stages and return the state."""

        request.validate()
        token = cancel_token if cancel_token is not None else CancellationToken()
        state = RequestState(request=request)

        token.raise_if_cancelled("gate")
        state = state.merge(**self._run_stage("gate", lambda: self._gate(state)))
        token.raise_if_cancelled("load")
        state = state.merge(
            **self._run_stage("load", lambda: self._load(state), audiobook=request.audiobook_id)
        )
        token.raise_if_cancelled("plan")
        state = state.merge(**self._run_stage("plan", lambda: self._plan(state)))
        return state

    def _gate(self, state: RequestState) -> dict[str, Any]:
        request = state.request
        allowed_idx = allowed_chapter_index(
            request.playback_chapter_idx,
            request.user_progress_idx,
        )
        if self._run_logger is not None and allowed_idx < request.playback_chapter_idx:
            self._run_logger.log_event(
                "gate",
                "clamped",
                allowed=allowed_idx,
                playback=request.playback_chapter_idx,
                progress=request.user_progress_idx,
            )
        return {"allowed_idx": allowed_idx}

    def _load(self, state: RequestState) -> dict[str, Any]:
        """Load the allowed chapter, its compressed form, and prior summaries."""

        request = state.request
        chapter = self.transcript_store.load_chapter(
            request.audiobook_id,
            state.require_allowed_idx(),
        )
        compressed_text = self.transcript_store.load_compressed_text(
            request.audiobook_id,
            chapter.idx,
        )
        if compressed_text:
            chapter = replace(chapter, compressed_text=compressed_text)

        prior_summaries: tuple[PriorSummary, ...] = ()
        if request.include_prior_summaries:
            prior_summaries = tuple(
                self.transcript_store.load_prior_summaries(request.audiobook_id, chapter.idx)
            )
        return {"chapter": chapter, "prior_summaries": prior_summaries}

    def _plan(self, state: RequestState) -> dict[str, Any]:
        request = state.request
        chapter = state.require_chapter()
        plan = self.planner.plan(
            chapter,
            request.token_budget,
            request.mode_hint,
            has_compressed=bool(chapter.compressed_text),
        )
        if self._run_logger is not None:
            self._run_logger.log_event(
                "plan",
                "packing_mode",
                estimated_tokens=plan.estimated_tokens,
                mode=plan.mode.value,
                reason=plan.reason,
                threshold=plan.full_threshold_tokens,
            )
        return {"budget_plan": plan, "packing_mode": plan.mode}

    async def _retrieve(self, state: RequestState, token: CancellationToken) -> dict[str, Any]:
        chapter = state.require_chapter()
        retrieval = await self.retriever.retrieve(
            chapter,
            state.request.question,
            state.request.token_budget,
            token,
        )
        return {
            "chapter": replace(chapter, segments=retrieval.segments),
            "retrieval_fallback": retrieval.fallback,
        }

    async def _compress(self, state: RequestState, token: CancellationToken) -> dict[str, Any]:
        chapter = state.require_chapter()
        condensed = await self.compressor.compress(
            state.request.audiobook_id,
            chapter,
            state.require_plan().full_threshold_tokens,
            token,
        )
        return {"chapter": replace(chapter, compressed_text=condensed)}

    def _assemble(self, state: RequestState) -> dict[str, Any]:
        request = state.request
        chapter = state.require_chapter()
        mode = state.require_plan().mode
        transcript = self.transcript_store.load(request.audiobook_id)
        messages = self.assembler.build_messages(
            book_title=transcript.source.title,
            chapter=chapter,
            mode=mode,
            question=request.question,
            prior_summaries=state.prior_summaries,
            user_memory=request.user_memory,
        )
        return {
            "assembled_messages": tuple(messages),
            "paragraph_count": self.assembler.paragraph_count(chapter, mode),
        }
