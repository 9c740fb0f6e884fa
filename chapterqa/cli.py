"""Command-line interface for chapterqa.

Responsibilities:
- Expose user-facing commands for chapter listing, packing plans, questions,
  and discussion notes.
- Convert CLI arguments into `ChapterQAConfig` and `QARequest` values.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer

from .cli_rendering import echo_answer, echo_chapter_list, echo_plan, exit_with_command_error
from .config import ChapterQAConfig, resolve_config
from .errors import ValidationError
from .factory import ComponentFactory
from .io.transcript_store import TranscriptStore
from .models.datatypes import ModeHint, QARequest
from .telemetry.logger import RunLogger
from .text.chapter_access import resolve_chapter_from_position

app = typer.Typer(
    name="chapterqa",
    no_args_is_help=True,
    help="Spoiler-safe audiobook chapter question answering.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="YAML config file."),
]
DatasetsDirOption = Annotated[
    Path | None,
    typer.Option("--datasets-dir", help="Directory with `<audiobook_id>.json` transcripts."),
]
ApiKeyOption = Annotated[
    str | None,
    typer.Option("--api-key", help="One-time OpenAI API key override."),
]
ChapterOption = Annotated[
    int | None,
    typer.Option("--chapter", help="1-based chapter under the playhead."),
]
PositionOption = Annotated[
    float | None,
    typer.Option("--position", help="Playback position in seconds (alternative to --chapter)."),
]
ProgressOption = Annotated[
    int | None,
    typer.Option(
        "--progress",
        help="Furthest chapter the listener has reached; defaults to the playback chapter.",
    ),
]
ModeOption = Annotated[
    ModeHint,
    typer.Option("--mode", help="Packing mode hint.", case_sensitive=False),
]
BudgetOption = Annotated[
    int | None,
    typer.Option("--budget", help="Prompt token budget (1000-500000)."),
]
NoSummariesOption = Annotated[
    bool,
    typer.Option("--no-summaries", help="Do not add earlier-chapter summaries."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", help="Print stage progress and structured logs."),
]


class StageProgressIndicator:
    """Render deterministic per-stage progress lines for a command."""

    _SPINNER_FRAMES = "|/-\\"

    def __init__(self, command_name: str) -> None:
        self._command_name = command_name

    def on_stage_start(self, stage_name: str, stage_index: int, stage_total: int) -> None:
        """Print one progress line for a stage start transition."""

        spinner = self._SPINNER_FRAMES[(stage_index - 1) % len(self._SPINNER_FRAMES)]
        typer.echo(
            f"[progress] command={self._command_name} "
            f"{spinner} {stage_index}/{stage_total} stage={stage_name}",
            err=True,
        )


def _resolve_command_config(
    config_path: Path | None,
    datasets_dir: Path | None,
    api_key: str | None = None,
    token_budget: int | None = None,
) -> ChapterQAConfig:
    """Resolve config sources and require a datasets directory."""

    overrides: dict[str, Any] = {
        "datasets_dir": datasets_dir,
        "api_key": api_key,
        "token_budget": token_budget,
    }
    config = resolve_config(config_path, cli_overrides=overrides)
    if config.datasets_dir is None:
        raise ValidationError(
            "No datasets directory configured.",
            stage="config",
            hint="Pass `--datasets-dir`, set `CHAPTERQA_DATASETS_DIR`, or add it to `--config`.",
        )
    return config


def _build_request(
    store: TranscriptStore,
    config: ChapterQAConfig,
    *,
    audiobook_id: str,
    question: str,
    chapter: int | None,
    position: float | None,
    progress: int | None,
    mode: ModeHint,
    no_summaries: bool,
    user_memory: str | None = None,
) -> QARequest:
    """Build a validated request, resolving `--position` against the transcript."""

    if chapter is not None and position is not None:
        raise ValidationError(
            "Use either `--chapter` or `--position`, not both.",
            stage="request",
            hint="Pass the chapter index or the playback position in seconds.",
        )
    if position is not None:
        playback_idx = resolve_chapter_from_position(store.chapters(audiobook_id), position)
    else:
        playback_idx = chapter if chapter is not None else 1

    request = QARequest(
        audiobook_id=audiobook_id,
        question=question,
        playback_chapter_idx=playback_idx,
        user_progress_idx=progress if progress is not None else playback_idx,
        mode_hint=mode,
        token_budget=config.token_budget,
        include_prior_summaries=config.include_prior_summaries and not no_summaries,
        user_memory=user_memory,
    )
    request.validate()
    return request


@app.command("chapters")
def chapters_command(
    audiobook_id: Annotated[str, typer.Argument(help="Audiobook dataset id.")],
    datasets_dir: DatasetsDirOption = None,
    config_path: ConfigOption = None,
) -> None:
    """List chapter indices, titles, and time bounds for an audiobook."""

    try:
        config = _resolve_command_config(config_path, datasets_dir)
        store = ComponentFactory.create_transcript_store(config)
        chapters = store.chapters(audiobook_id)
        transcript = store.load(audiobook_id)
    except Exception as exc:
        exit_with_command_error("chapters", exc)

    typer.echo(f"Title: {transcript.source.title}")
    echo_chapter_list(chapters)


@app.command("plan")
def plan_command(
    audiobook_id: Annotated[str, typer.Argument(help="Audiobook dataset id.")],
    chapter: ChapterOption = None,
    position: PositionOption = None,
    progress: ProgressOption = None,
    mode: ModeOption = ModeHint.AUTO,
    budget: BudgetOption = None,
    no_summaries: NoSummariesOption = False,
    datasets_dir: DatasetsDirOption = None,
    config_path: ConfigOption = None,
) -> None:
    """Show the spoiler gate and packing decision without calling the LLM."""

    try:
        config = _resolve_command_config(config_path, datasets_dir, token_budget=budget)
        store = ComponentFactory.create_transcript_store(config)
        pipeline = ComponentFactory.create_pipeline(config, transcript_store=store)
        request = _build_request(
            store,
            config,
            audiobook_id=audiobook_id,
            question="Packing plan preview.",
            chapter=chapter,
            position=position,
            progress=progress,
            mode=mode,
            no_summaries=no_summaries,
        )
        state = pipeline.prepare(request)
    except Exception as exc:
        exit_with_command_error("plan", exc)

    echo_plan(state)


@app.command("ask")
def ask_command(
    audiobook_id: Annotated[str, typer.Argument(help="Audiobook dataset id.")],
    question: Annotated[str, typer.Argument(help="Listener question.")],
    chapter: ChapterOption = None,
    position: PositionOption = None,
    progress: ProgressOption = None,
    mode: ModeOption = ModeHint.AUTO,
    budget: BudgetOption = None,
    no_summaries: NoSummariesOption = False,
    notes: Annotated[
        str | None,
        typer.Option("--notes", help="Listener notes added to the prompt."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the answer as response-contract JSON."),
    ] = False,
    datasets_dir: DatasetsDirOption = None,
    config_path: ConfigOption = None,
    api_key: ApiKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Answer a question using only content up to the allowed chapter."""

    try:
        config = _resolve_command_config(config_path, datasets_dir, api_key, budget)
        run_logger = RunLogger() if verbose else None
        store = ComponentFactory.create_transcript_store(config, run_logger)
        pipeline = ComponentFactory.create_pipeline(
            config,
            transcript_store=store,
            run_logger=run_logger,
            stage_progress_callback=(
                StageProgressIndicator("ask").on_stage_start if verbose else None
            ),
        )
        coordinator = ComponentFactory.create_coordinator(config, pipeline, run_logger)
        request = _build_request(
            store,
            config,
            audiobook_id=audiobook_id,
            question=question,
            chapter=chapter,
            position=position,
            progress=progress,
            mode=mode,
            no_summaries=no_summaries,
            user_memory=notes,
        )
        result = asyncio.run(coordinator.submit(request))
    except Exception as exc:
        exit_with_command_error("ask", exc)

    echo_answer(result, as_json=as_json)


@app.command("notes")
def notes_command(
    transcript_file: Annotated[
        Path,
        typer.Argument(help="Text file with a short listener discussion transcript."),
    ],
    config_path: ConfigOption = None,
    api_key: ApiKeyOption = None,
) -> None:
    """Generate high-level notes from a discussion transcript."""

    try:
        config = resolve_config(config_path, cli_overrides={"api_key": api_key})
        discussion = transcript_file.read_text(encoding="utf-8")
        if not discussion.strip():
            raise ValidationError(
                f"Discussion transcript `{transcript_file}` is empty.",
                stage="notes",
                hint="Provide a non-empty text file.",
            )
        note_taker = ComponentFactory.create_note_taker(config)
        notes = asyncio.run(note_taker.take_notes(discussion))
    except Exception as exc:
        exit_with_command_error("notes", exc)

    typer.echo(notes)


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
