"""CLI entrypoint for dub-batch."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from dub_batch import __version__
from dub_batch.orchestrator.controllers import (
    BatchCliController,
    BatchRunCommand,
    TranslateSrtCommand,
)
from dub_batch.orchestrator.models import ALLOWED_PARALLEL_LIMITS

click.rich_click.USE_MARKDOWN = True
BATCH_CONTROLLER = BatchCliController()


@click.group()
@click.version_option(version=__version__, prog_name="dub-batch")
@click.option(
    "--log-level",
    envvar="DUB_BATCH_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Python logging level.",
)
def dub_batch(log_level: str) -> None:
    """Batch transcription, translation and dubbing CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@dub_batch.command("run")
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
)
@click.option(
    "--parallel",
    "parallel_limit",
    type=click.Choice([str(value) for value in ALLOWED_PARALLEL_LIMITS]),
    default=None,
    help="How many tasks run at once.",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=None,
    help="Automatic retry ceiling per task.",
)
@click.option(
    "--auto-retry/--no-auto-retry",
    default=None,
    help="Retry failed tasks automatically up to the ceiling.",
)
@click.option(
    "--failure-probability",
    type=click.FloatRange(min=0.0, max=1.0),
    default=None,
    help="Simulated per-stage failure probability.",
)
@click.option("--seed", type=int, default=None, help="Seed for simulated latency and faults.")
@click.option(
    "--export-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Where translated SRT files are written.",
)
@click.option(
    "--live/--simulate",
    default=None,
    help="Use the configured AI gateway and ffmpeg instead of the simulator.",
)
@click.option(
    "--show-task-logs/--no-show-task-logs",
    default=False,
    show_default=True,
    help="Print each task's log after the batch.",
)
def run_batch(  # noqa: PLR0913
    paths: tuple[Path, ...],
    parallel_limit: str | None,
    max_retries: int | None,
    auto_retry: bool | None,
    failure_probability: float | None,
    seed: int | None,
    export_dir: Path | None,
    live: bool | None,
    show_task_logs: bool,
) -> None:
    """Ingest files and run them through the pipeline as one batch."""

    _emit_lines(
        _guarded(
            lambda: BATCH_CONTROLLER.run_batch(
                BatchRunCommand(
                    paths=paths,
                    parallel_limit=int(parallel_limit) if parallel_limit else None,
                    max_retries=max_retries,
                    auto_retry=auto_retry,
                    failure_probability=failure_probability,
                    seed=seed,
                    export_dir=export_dir,
                    live=live,
                    show_task_logs=show_task_logs,
                ),
            ),
        ),
    )


@dub_batch.command("translate-srt")
@click.argument("path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--target-language", default=None, help="Target language name.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Output SRT path.",
)
@click.option("--live/--simulate", default=None, help="Use the configured AI gateway.")
def translate_srt(
    path: Path,
    target_language: str | None,
    output_path: Path | None,
    live: bool | None,
) -> None:
    """Translate one SRT file."""

    _emit_lines(
        _guarded(
            lambda: BATCH_CONTROLLER.translate_srt(
                TranslateSrtCommand(
                    path=path,
                    target_language=target_language,
                    output_path=output_path,
                    live=live,
                ),
            ),
        ),
    )


@dub_batch.command("stages")
def stages() -> None:
    """Show the pipeline stages and their progress targets."""

    _emit_lines(BATCH_CONTROLLER.stages())


def _guarded(call: Callable[[], list[str]]) -> list[str]:
    try:
        return call()
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    dub_batch()
