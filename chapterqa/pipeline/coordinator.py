"""Per-session request coordination for voice and typed questions.

Responsibilities:
- Track the listening/answering interaction state for each session.
- Keep at most one pipeline execution in flight per session, queueing the rest.
- Race every execution against its cancellation token and a wall-clock timeout.
- Cancel in-flight work on barge-in and stop without waiting for teardown.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ..cancellation import CancellationToken, consume_task_outcome
from ..errors import RequestCancelledError, RequestTimeoutError
from ..models.datatypes import AnswerResult, QARequest
from ..telemetry.logger import RunLogger

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_SESSION_ID = "default"


class InteractionState(str, Enum):
    """Listening/answering state of one session."""

    IDLE = "idle"
    CAPTURING_SPEECH = "capturing_speech"
    AWAITING_ANSWER = "awaiting_answer"
    SPEAKING_ANSWER = "speaking_answer"


_ALLOWED_TRANSITIONS: dict[InteractionState, frozenset[InteractionState]] = {
    InteractionState.IDLE: frozenset(
        {InteractionState.CAPTURING_SPEECH, InteractionState.AWAITING_ANSWER}
    ),
    InteractionState.CAPTURING_SPEECH: frozenset(
        {InteractionState.AWAITING_ANSWER, InteractionState.IDLE}
    ),
    InteractionState.AWAITING_ANSWER: frozenset(
        {
            InteractionState.SPEAKING_ANSWER,
            InteractionState.CAPTURING_SPEECH,
            InteractionState.IDLE,
        }
    ),
    InteractionState.SPEAKING_ANSWER: frozenset(
        {
            InteractionState.IDLE,
            InteractionState.CAPTURING_SPEECH,
            InteractionState.AWAITING_ANSWER,
        }
    ),
}


class QuestionPipeline(Protocol):
    """Pipeline surface the coordinator drives."""

    async def run(
        self,
        request: QARequest,
        cancel_token: CancellationToken | None = None,
    ) -> AnswerResult:
        """Answer one request, observing `cancel_token`."""


@dataclass(slots=True)
class _PendingQuery:
    """One submitted question and the future its caller awaits."""

    request: QARequest
    future: asyncio.Future
    token: CancellationToken = field(default_factory=CancellationToken)


@dataclass(slots=True)
class _Session:
    state: InteractionState = InteractionState.IDLE
    in_flight: _PendingQuery | None = None
    queue: deque[_PendingQuery] = field(default_factory=deque)


class RequestCoordinator:
    """Single-flight, barge-in aware front door to the pipeline.

    All bookkeeping runs on the event loop at hand-off points (start, settle,
    barge-in, stop), so no locks are needed.
    """

    def __init__(
        self,
        pipeline: QuestionPipeline,
        *,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        run_logger: RunLogger | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive.")
        self.pipeline = pipeline
        self.timeout_seconds = timeout_seconds
        self._run_logger = run_logger
        self._sessions: dict[str, _Session] = {}
        self._tasks: set[asyncio.Task] = set()

    def state(self, session_id: str = DEFAULT_SESSION_ID) -> InteractionState:
        return self._session(session_id).state

    def pending_count(self, session_id: str = DEFAULT_SESSION_ID) -> int:
        """Return the number of queued (not yet started) queries."""

        return sum(1 for query in self._session(session_id).queue if not query.future.done())

    def is_busy(self, session_id: str = DEFAULT_SESSION_ID) -> bool:
        return self._session(session_id).in_flight is not None

    async def submit(
        self,
        request: QARequest,
        session_id: str = DEFAULT_SESSION_ID,
    ) -> AnswerResult:
        """Run `request` now if the session is free, otherwise after queued work.

        Raises:
            RequestCancelledError: If barge-in or stop cancels this query.
            RequestTimeoutError: If execution exceeds `timeout_seconds`.
            ChapterQAError: Any pipeline stage failure.
        """

        session = self._session(session_id)
        query = self._new_query(request)
        if session.in_flight is None and not session.queue:
            self._start(session_id, session, query)
        else:
            session.queue.append(query)
            self._log("queued", session_id, pending=len(session.queue))
            if session.in_flight is None:
                self._drain(session_id, session)
        return await self._await_query(session_id, query)

    def speech_detected(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        """Handle listener speech: cancel any in-flight answer and start capturing."""

        session = self._session(session_id)
        self._interrupt(session_id, session, reason="barge_in")
        self._transition(session_id, session, InteractionState.CAPTURING_SPEECH)

    def interrupt(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        self.speech_detected(session_id)

    async def barge_in(
        self,
        request: QARequest,
        session_id: str = DEFAULT_SESSION_ID,
    ) -> AnswerResult:
        """Cancel in-flight work and run `request` immediately, ahead of the queue."""

        session = self._session(session_id)
        self._interrupt(session_id, session, reason="barge_in")
        query = self._new_query(request)
        self._start(session_id, session, query)
        return await self._await_query(session_id, query)

    def end_capture(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        """Leave speech capture without a question and resume queued work."""

        session = self._session(session_id)
        if session.state is not InteractionState.CAPTURING_SPEECH or session.in_flight is not None:
            return
        self._transition(session_id, session, InteractionState.IDLE)
        self._drain(session_id, session)

    def finish_speaking(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        """Mark the spoken answer as finished."""

        session = self._session(session_id)
        if session.state is InteractionState.SPEAKING_ANSWER:
            self._transition(session_id, session, InteractionState.IDLE)

    def stop(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        """Cancel in-flight and all queued queries; the session returns to idle."""

        session = self._session(session_id)
        self._interrupt(session_id, session, reason="stopped")
        while session.queue:
            query = session.queue.popleft()
            query.token.cancel("stopped")
            self._reject_cancelled(query, "Request stopped before it started.")
        self._transition(session_id, session, InteractionState.IDLE)
        self._log("stopped", session_id)

    def _session(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = _Session()
            self._sessions[session_id] = session
        return session

    @staticmethod
    def _new_query(request: QARequest) -> _PendingQuery:
        return _PendingQuery(request=request, future=asyncio.get_running_loop().create_future())

    def _transition(self, session_id: str, session: _Session, target: InteractionState) -> None:
        if session.state is target:
            return
        if target not in _ALLOWED_TRANSITIONS[session.state]:
            raise RuntimeError(
                f"Illegal interaction transition `{session.state.value}` -> `{target.value}`."
            )
        previous = session.state
        session.state = target
        self._log("transition", session_id, source=previous.value, target=target.value)

    def _start(self, session_id: str, session: _Session, query: _PendingQuery) -> None:
        session.in_flight = query
        query.token.mark_started()
        self._transition(session_id, session, InteractionState.AWAITING_ANSWER)
        task = asyncio.get_running_loop().create_task(self._execute(session_id, query))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _drain(self, session_id: str, session: _Session) -> None:
        """Start the oldest live queued query, skipping abandoned ones."""

        while session.queue and session.in_flight is None:
            query = session.queue.popleft()
            if query.future.done():
                continue
            self._start(session_id, session, query)

    async def _await_query(self, session_id: str, query: _PendingQuery) -> AnswerResult:
        try:
            return await query.future
        except asyncio.CancelledError:
            self._abandon(session_id, query)
            raise

    def _abandon(self, session_id: str, query: _PendingQuery) -> None:
        """Drop a query whose caller stopped waiting."""

        session = self._session(session_id)
        query.token.cancel("abandoned")
        if query in session.queue:
            session.queue.remove(query)
        self._log("abandoned", session_id)

    def _interrupt(self, session_id: str, session: _Session, *, reason: str) -> None:
        """Cancel and detach the in-flight query without awaiting its teardown."""

        query = session.in_flight
        if query is None:
            return
        session.in_flight = None
        query.token.cancel(reason)
        self._reject_cancelled(query, f"Request cancelled by {reason.replace('_', '-')}.")
        self._log("interrupted", session_id, elapsed_ms=query.token.elapsed_ms(), reason=reason)

    @staticmethod
    def _reject_cancelled(query: _PendingQuery, detail: str) -> None:
        if not query.future.done():
            query.future.set_exception(
                RequestCancelledError(
                    detail,
                    elapsed_ms=query.token.elapsed_ms(),
                    stage="coordinator",
                )
            )

    async def _execute(self, session_id: str, query: _PendingQuery) -> None:
        try:
            result = await self._run_with_timeout(session_id, query)
        except Exception as exc:
            if not query.future.done():
                query.future.set_exception(exc)
        else:
            if not query.future.done():
                query.future.set_result(result)
        finally:
            self._settle(session_id, query)

    async def _run_with_timeout(self, session_id: str, query: _PendingQuery) -> AnswerResult:
        """Race pipeline completion, the cancellation token, and the timeout."""

        token = query.token
        work = asyncio.ensure_future(self.pipeline.run(query.request, token))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            token.cancel("cancelled")
            work.cancel()
            waiter.cancel()
            raise

        if token.cancelled:
            self._discard(work)
            waiter.cancel()
            raise RequestCancelledError(
                f"Request {token.reason or 'cancelled'}.",
                elapsed_ms=token.elapsed_ms(),
                stage="coordinator",
            )
        if not done:
            token.cancel("timeout")
            self._discard(work)
            waiter.cancel()
            elapsed_ms = token.elapsed_ms()
            if self._run_logger is not None:
                self._run_logger.log_warning(
                    "coordinator",
                    "timeout",
                    elapsed_ms=elapsed_ms,
                    session=session_id,
                )
            raise RequestTimeoutError(
                f"Request timed out after {self.timeout_seconds:g}s.",
                elapsed_ms=elapsed_ms,
                stage="coordinator",
                hint="Retry the question, or ask in `focused` mode for a smaller prompt.",
            )

        waiter.cancel()
        return work.result()

    @staticmethod
    def _discard(work: asyncio.Future) -> None:
        if not work.done():
            work.cancel()
        work.add_done_callback(consume_task_outcome)

    def _settle(self, session_id: str, query: _PendingQuery) -> None:
        """Release the in-flight slot and start the next queued query."""

        session = self._session(session_id)
        if session.in_flight is not query:
            return
        session.in_flight = None
        future = query.future
        succeeded = future.done() and not future.cancelled() and future.exception() is None
        self._transition(
            session_id,
            session,
            InteractionState.SPEAKING_ANSWER if succeeded else InteractionState.IDLE,
        )
        self._drain(session_id, session)

    def _log(self, event: str, session_id: str, **context: object) -> None:
        if self._run_logger is not None:
            self._run_logger.log_event("coordinator", event, session=session_id, **context)
