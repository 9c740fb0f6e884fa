"""Cooperative cancellation token threaded through one request.

Responsibilities:
- Carry one explicit cancellation signal per pipeline execution.
- Race external-call awaitables against that signal so they return promptly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from time import monotonic
from typing import TypeVar

from .errors import RequestCancelledError

_Result = TypeVar("_Result")


def consume_task_outcome(task: asyncio.Future) -> None:
    """Retrieve a finished task's exception so it is never reported as unhandled."""

    if task.done() and not task.cancelled():
        task.exception()


class CancellationToken:
    """One-shot cancellation signal observed at every external-call boundary."""

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._clock = clock
        self._started_at = clock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token; later calls keep the first reason."""

        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def mark_started(self) -> None:
        """Measure `elapsed_ms` from now instead of from token creation."""

        self._started_at = self._clock()

    def elapsed_ms(self) -> int:
        return int(round((self._clock() - self._started_at) * 1000))

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self.cancelled:
            raise self._cancelled_error(stage)

    async def guard(self, awaitable: Awaitable[_Result], *, stage: str) -> _Result:
        """Await `awaitable` unless the token fires first.

        On cancellation the wrapped work is cancelled and `RequestCancelledError`
        is raised without waiting for the work's teardown.
        """

        self.raise_if_cancelled(stage)
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if self.cancelled:
            if not work.done():
                work.cancel()
            work.add_done_callback(consume_task_outcome)
            raise self._cancelled_error(stage)

        waiter.cancel()
        return work.result()

    def _cancelled_error(self, stage: str | None) -> RequestCancelledError:
        return RequestCancelledError(
            f"Request {self._reason or 'cancelled'} during `{stage or 'pipeline'}`.",
            elapsed_ms=self.elapsed_ms(),
            stage=stage,
        )
