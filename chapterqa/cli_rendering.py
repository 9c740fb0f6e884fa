"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
chapter listings, packing plans, and answers.
"""

from __future__ import annotations

import json
from typing import NoReturn

import typer

from .errors import ChapterQAError
from .models.datatypes import AnswerResult, Chapter, RequestState
from .parsing import format_time_tag


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, ChapterQAError) and exc.stage:
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    if isinstance(exc, ChapterQAError) and exc.hint:
        typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    raise typer.Exit(code=1) from exc


def echo_chapter_list(chapters: list[Chapter]) -> None:
    """Print compact deterministic chapter rows with time bounds."""

    for chapter in sorted(chapters, key=lambda item: item.idx):
        typer.echo(
            f"{chapter.idx}. {chapter.title} "
            f"{format_time_tag(chapter.start_s)}-{format_time_tag(chapter.end_s)}"
        )


def echo_plan(state: RequestState) -> None:
    """Print the gate and packing decision for one request."""

    plan = state.require_plan()
    chapter = state.require_chapter()
    typer.echo(f"Allowed chapter: {chapter.idx}. {chapter.title}")
    typer.echo(f"Segments: {len(chapter.segments)}")
    typer.echo(f"Estimated tokens: {plan.estimated_tokens}")
    typer.echo(f"Token budget: {plan.token_budget}")
    typer.echo(f"Full-mode threshold: {plan.full_threshold_tokens}")
    typer.echo(f"Compressed form available: {'yes' if plan.has_compressed else 'no'}")
    typer.echo(f"Packing mode: {plan.mode.value} ({plan.reason})")
    typer.echo(f"Prior summaries: {len(state.prior_summaries)}")


def echo_answer(result: AnswerResult, as_json: bool = False) -> None:
    """Print an answer as markdown with metadata lines, or as contract JSON."""

    if as_json:
        typer.echo(json.dumps(result.as_payload(), ensure_ascii=False, indent=2))
        return

    typer.echo(result.answer_markdown)
    typer.echo("")
    if result.packing_mode is not None:
        typer.echo(f"Packing mode: {result.packing_mode.value}")
    if result.citations:
        typer.echo("Citations: " + ", ".join(citation.ref for citation in result.citations))
    if result.playback_hint is not None:
        typer.echo(
            f"Playback hint: chapter {result.playback_hint.chapter_idx} "
            f"at {format_time_tag(result.playback_hint.start_s)}"
        )
    if result.latency_ms is not None:
        typer.echo(f"Latency: {result.latency_ms} ms")
