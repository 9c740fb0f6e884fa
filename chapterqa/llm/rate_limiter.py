"""Request pacing for provider calls.

The chat client runs on worker threads, so pacing state is guarded by a lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from time import monotonic, sleep
from typing import Callable


@dataclass(slots=True)
class RateLimiter:
    """Per-key minimum-interval limiter used around provider requests."""

    min_interval_seconds: float = 0.05
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], None] = sleep
    _next_allowed_at: dict[str, float] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def acquire(self, key: str) -> None:
        """Block until `key` may issue its next request, then reserve the next slot."""

        if self.min_interval_seconds <= 0.0:
            return
        with self._lock:
            now = self.clock()
            wait_seconds = self._next_allowed_at.get(key, 0.0) - now
            reserved_at = now + max(0.0, wait_seconds)
            self._next_allowed_at[key] = reserved_at + self.min_interval_seconds
        if wait_seconds > 0.0:
            self.sleeper(wait_seconds)
