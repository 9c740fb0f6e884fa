"""Shared parsing helpers for runtime values and transcript time tags."""

from __future__ import annotations

import re


_TRUE_BOOLEAN_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_BOOLEAN_TOKENS = frozenset({"0", "false", "no", "off"})
_TIME_TAG_RE = re.compile(r"^\[(?:t=)?(\d+):([0-5]\d)\]$")
_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_permissive_boolean(value: object) -> bool | None:
    """Parse a permissive boolean token and return `None` for invalid values."""

    if isinstance(value, bool):
        return value

    normalized = normalize_optional_string(value)
    if normalized is None:
        return None

    token = normalized.lower()
    if token in _TRUE_BOOLEAN_TOKENS:
        return True
    if token in _FALSE_BOOLEAN_TOKENS:
        return False
    return None


def normalize_whitespace(text: str) -> str:
    """Collapse all whitespace runs to single spaces and trim the result."""

    return " ".join(text.split())


def format_time_tag(seconds: float) -> str:
    """Format a playback offset as a `[t=MM:SS]` prompt tag."""

    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    return f"[t={minutes:02d}:{secs:02d}]"


def parse_time_tag(tag: str) -> int | None:
    """Parse `[t=MM:SS]` or `[MM:SS]` into seconds, or `None` when malformed."""

    match = _TIME_TAG_RE.match(tag.strip())
    if match is None:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def strip_code_fence(text: str) -> str:
    """Remove one surrounding markdown code fence, if present."""

    return _CODE_FENCE_RE.sub("", text.strip()).strip()


def is_safe_dataset_id(value: str) -> bool:
    """Return whether `value` can name a file inside the datasets directory."""

    return bool(value) and not value.startswith(".") and not any(
        separator in value for separator in ("/", "\\", "\x00")
    )
