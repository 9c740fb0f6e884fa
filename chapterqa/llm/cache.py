"""Deterministic response cache for repeated LLM sub-calls.

Responsibilities:
- Build stable keys from model/operation and a normalized identity payload.
- Reuse keyword lists and on-demand chapter compressions across requests.
- Bound memory by evicting the oldest entries first.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from hashlib import sha256
import json
from typing import Any


def _normalize_identity_value(value: Any) -> Any:
    """Normalize identity payload values so whitespace and key order never split keys."""

    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, list | tuple):
        return [_normalize_identity_value(item) for item in value]
    if isinstance(value, dict):
        return {
            str(key): _normalize_identity_value(value[key])
            for key in sorted(value.keys(), key=str)
        }
    return value


@dataclass(slots=True)
class ResponseCache:
    """In-memory cache keyed by model/operation/input identity with FIFO eviction."""

    max_entries: int = 512
    entries: OrderedDict[str, str] = field(default_factory=OrderedDict)
    hits: int = 0
    misses: int = 0

    @staticmethod
    def make_key(*, model: str, operation: str, input_identity: Any) -> str:
        """Build a deterministic key with a hash of the normalized identity."""

        canonical_identity = json.dumps(
            _normalize_identity_value(input_identity),
            sort_keys=True,
            ensure_ascii=True,
            separators=(",", ":"),
        )
        identity_hash = sha256(canonical_identity.encode("utf-8")).hexdigest()
        return f"llm:{model.strip()}:{operation.strip().lower()}:{identity_hash}"

    def get(self, cache_key: str) -> str | None:
        """Return the cached value for `cache_key` and update hit/miss counters."""

        value = self.entries.get(cache_key)
        if value is None:
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, cache_key: str, value: str) -> None:
        self.entries[cache_key] = value
        self.entries.move_to_end(cache_key)
        while len(self.entries) > max(1, self.max_entries):
            self.entries.popitem(last=False)

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / float(total)
