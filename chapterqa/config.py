"""Configuration model and loaders for chapterqa.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Provide loader entry points for file- and environment-based configuration.
- Resolve deterministic precedence: CLI > environment > file > defaults.

Key types:
- `ChapterQAConfig`: normalized runtime settings.
- `ConfigLoader`: static construction helpers for `ChapterQAConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError
from .models.datatypes import DEFAULT_TOKEN_BUDGET, MAX_TOKEN_BUDGET, MIN_TOKEN_BUDGET
from .parsing import normalize_optional_string, parse_permissive_boolean


_DEFAULT_ANSWER_MODEL = "gpt-4.1-mini"
_DEFAULT_KEYWORD_MODEL = "gpt-4.1-mini"
_ENV_PREFIX = "CHAPTERQA_"
_KIND_NOUNS = {"int": "an integer", "float": "a number", "string": "a string", "path": "a path"}


@dataclass(frozen=True, slots=True)
class ChapterQAConfig:
    """Runtime configuration for the question-answering service.

    Attributes:
        datasets_dir: Directory holding `<audiobook_id>.json` transcripts and sidecars.
        answer_model: Chat model used for answers, compression, and notes.
        keyword_model: Chat model used for focused-retrieval keyword extraction.
        api_key: Optional OpenAI API key.
        base_url: OpenAI-compatible API base URL.
        http_timeout_seconds: Per-HTTP-request timeout.
        request_timeout_seconds: Coordinator wall-clock timeout per question.
        token_budget: Default prompt token budget.
        chars_per_token: Character-to-token ratio for estimates.
        reserved_tokens: Headroom reserved for prompts and the answer.
        safety_ratio: Share of the remaining budget a full chapter may use.
        answer_temperature: Sampling temperature for the answering call.
        keyword_temperature: Sampling temperature for keyword extraction.
        prior_summary_window: Maximum number of earlier-chapter summaries.
        paragraph_soft_chars: Character length after which paragraphs may close.
        min_request_interval_seconds: Minimum spacing between provider requests.
        include_prior_summaries: Default for adding earlier-chapter summaries.
    """

    datasets_dir: Path | None = None
    answer_model: str = _DEFAULT_ANSWER_MODEL
    keyword_model: str = _DEFAULT_KEYWORD_MODEL
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    http_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    token_budget: int = DEFAULT_TOKEN_BUDGET
    chars_per_token: int = 4
    reserved_tokens: int = 20000
    safety_ratio: float = 0.8
    answer_temperature: float = 0.2
    keyword_temperature: float = 0.0
    prior_summary_window: int = 3
    paragraph_soft_chars: int = 400
    min_request_interval_seconds: float = 0.05
    include_prior_summaries: bool = True

    def validate(self) -> None:
        """Validate configuration values; raises `ValueError` on the first violation."""

        self._require_non_empty(self.answer_model, "answer_model")
        self._require_non_empty(self.keyword_model, "keyword_model")
        self._require_non_empty(self.base_url, "base_url")
        if self.http_timeout_seconds <= 0:
            raise ValueError("`http_timeout_seconds` must be positive.")
        if self.request_timeout_seconds <= 0:
            raise ValueError("`request_timeout_seconds` must be positive.")
        if not MIN_TOKEN_BUDGET <= self.token_budget <= MAX_TOKEN_BUDGET:
            raise ValueError(
                f"`token_budget` must be between {MIN_TOKEN_BUDGET} and {MAX_TOKEN_BUDGET}."
            )
        if self.chars_per_token <= 0:
            raise ValueError("`chars_per_token` must be a positive integer.")
        if self.reserved_tokens < 0:
            raise ValueError("`reserved_tokens` must not be negative.")
        if not 0.0 < self.safety_ratio <= 1.0:
            raise ValueError("`safety_ratio` must be within (0, 1].")
        for name in ("answer_temperature", "keyword_temperature"):
            if not 0.0 <= getattr(self, name) <= 2.0:
                raise ValueError(f"`{name}` must be within [0, 2].")
        if self.prior_summary_window <= 0:
            raise ValueError("`prior_summary_window` must be a positive integer.")
        if self.paragraph_soft_chars <= 0:
            raise ValueError("`paragraph_soft_chars` must be a positive integer.")
        if self.min_request_interval_seconds < 0:
            raise ValueError("`min_request_interval_seconds` must not be negative.")

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        if not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigLoader:
    """Factory methods for creating `ChapterQAConfig` from external sources."""

    _FIELD_KINDS: dict[str, str] = {
        "datasets_dir": "path",
        "answer_model": "string",
        "keyword_model": "string",
        "api_key": "string",
        "base_url": "string",
        "http_timeout_seconds": "float",
        "request_timeout_seconds": "float",
        "token_budget": "int",
        "chars_per_token": "int",
        "reserved_tokens": "int",
        "safety_ratio": "float",
        "answer_temperature": "float",
        "keyword_temperature": "float",
        "prior_summary_window": "int",
        "paragraph_soft_chars": "int",
        "min_request_interval_seconds": "float",
        "include_prior_summaries": "bool",
    }
    _API_KEY_ENV = "OPENAI_API_KEY"

    @staticmethod
    def from_yaml(path: Path) -> ChapterQAConfig:
        """Create a validated config from a YAML file."""

        return ConfigLoader._build(ConfigLoader.yaml_values(path))

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ChapterQAConfig:
        """Create a validated config from environment variables."""

        return ConfigLoader._build(ConfigLoader.env_values(env))

    @staticmethod
    def yaml_values(path: Path) -> dict[str, Any]:
        """Return typed values present in a YAML file; unknown keys are rejected."""

        source_label = f"YAML `{path}`"
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"{source_label} must contain a top-level mapping/object.")

        unknown = sorted(str(key) for key in set(payload).difference(ConfigLoader._FIELD_KINDS))
        if unknown:
            raise ValueError(f"{source_label} includes unsupported key(s): {', '.join(unknown)}.")

        values: dict[str, Any] = {}
        for key, raw_value in payload.items():
            parsed = ConfigLoader._parse_value(
                raw_value,
                ConfigLoader._FIELD_KINDS[key],
                f"{source_label} field `{key}`",
            )
            if parsed is not None:
                values[key] = parsed
        return values

    @staticmethod
    def env_values(env: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Return typed values present in `CHAPTERQA_*` and `OPENAI_API_KEY` variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        values: dict[str, Any] = {}
        for key, kind in ConfigLoader._FIELD_KINDS.items():
            env_key = ConfigLoader.env_key(key)
            if env_key not in env_map:
                continue
            parsed = ConfigLoader._parse_value(
                env_map[env_key],
                kind,
                f"Environment variable `{env_key}`",
            )
            if parsed is not None:
                values[key] = parsed
        return values

    @staticmethod
    def env_key(field_name: str) -> str:
        if field_name == "api_key":
            return ConfigLoader._API_KEY_ENV
        return f"{_ENV_PREFIX}{field_name.upper()}"

    @staticmethod
    def _build(values: Mapping[str, Any]) -> ChapterQAConfig:
        config = ChapterQAConfig(**values)
        config.validate()
        return config

    @staticmethod
    def _parse_value(raw_value: object, kind: str, label: str) -> Any:
        """Parse one raw value by field kind; blank strings mean "not set"."""

        if kind == "bool":
            if raw_value is None:
                return None
            parsed_bool = parse_permissive_boolean(raw_value)
            if parsed_bool is None:
                raise ValueError(
                    f"{label} must be a boolean value (`true`/`false`, `1`/`0`, `yes`/`no`)."
                )
            return parsed_bool

        if isinstance(raw_value, bool):
            raise ValueError(f"{label} must be {_KIND_NOUNS[kind]}.")

        normalized = normalize_optional_string(raw_value)
        if normalized is None:
            return None
        if kind == "string":
            return normalized
        if kind == "path":
            return Path(normalized)
        try:
            if kind == "int":
                return int(normalized)
            return float(normalized)
        except ValueError as exc:
            raise ValueError(f"{label} must be {_KIND_NOUNS[kind]}.") from exc


def resolve_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> ChapterQAConfig:
    """Resolve configuration with precedence CLI > environment > file > defaults.

    `None` values in `cli_overrides` mean "not provided".

    Raises:
        ConfigError: If any source is unreadable or the merged config is invalid.
    """

    known_fields = {item.name for item in fields(ChapterQAConfig)}
    try:
        values: dict[str, Any] = {}
        if config_path is not None:
            values.update(ConfigLoader.yaml_values(config_path))
        values.update(ConfigLoader.env_values(env))
        for key, value in (cli_overrides or {}).items():
            if key not in known_fields:
                raise ValueError(f"Unsupported configuration override `{key}`.")
            if value is not None:
                values[key] = value
        return ConfigLoader._build(values)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(
            str(exc),
            stage="config",
            hint="Fix the config file, `CHAPTERQA_*` variables, or CLI options and retry.",
        ) from exc
