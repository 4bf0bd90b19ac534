"""Controllers for batch CLI commands."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from pathlib import Path

from dub_batch.config import Settings
from dub_batch.orchestrator.models import BatchRunSummary, TaskKind, TaskRecord, TaskStatus
from dub_batch.orchestrator.services import BatchOrchestrator
from dub_batch.orchestrator.stages import DEFAULT_STAGES


@dataclass(slots=True)
class BatchRunCommand:
    """CLI input for one batch run."""

    paths: tuple[Path, ...]
    parallel_limit: int | None = None
    max_retries: int | None = None
    auto_retry: bool | None = None
    failure_probability: float | None = None
    seed: int | None = None
    export_dir: Path | None = None
    live: bool | None = None
    show_task_logs: bool = False


@dataclass(slots=True)
class TranslateSrtCommand:
    """CLI input for single subtitle file translation."""

    path: Path
    target_language: str | None = None
    output_path: Path | None = None
    live: bool | None = None


class BatchCliController:
    """Coordinates intake, batch execution, and reporting for the CLI."""

    def run_batch(self, command: BatchRunCommand) -> list[str]:
        settings = _apply_overrides(Settings.from_env(), command)
        orchestrator = BatchOrchestrator.from_settings(settings)
        created = orchestrator.ingest_paths(command.paths)
        if not created:
            return ["No supported media or subtitle files were ingested."]

        summary = asyncio.run(_run_and_close(orchestrator))
        lines = [_summary_line(summary)]
        lines.extend(_task_line(task) for task in orchestrator.tasks())
        if command.show_task_logs:
            for task in orchestrator.tasks():
                lines.append(f"--- {task.name} ({task.task_id}) ---")
                lines.extend(task.log)

        export_dir = command.export_dir or settings.dubbing.output_dir
        lines.extend(
            _export_completed(
                orchestrator,
                export_dir=export_dir,
                language=settings.dubbing.target_language,
            ),
        )
        lines.append("Global log:")
        lines.extend(orchestrator.global_log())
        return lines

    def translate_srt(self, command: TranslateSrtCommand) -> list[str]:
        settings = Settings.from_env()
        if command.target_language:
            settings.dubbing = replace(settings.dubbing, target_language=command.target_language)
        if command.live is not None:
            settings.simulation = replace(settings.simulation, enabled=not command.live)
        settings.batch = replace(settings.batch, parallel_limit=1)

        orchestrator = BatchOrchestrator.from_settings(settings)
        created = orchestrator.ingest_paths([command.path])
        if not created or created[0].kind != TaskKind.SUBTITLE:
            return [f"Not a subtitle file: {command.path}"]

        asyncio.run(_run_and_close(orchestrator))
        task = orchestrator.get(created[0].task_id)
        if task.status != TaskStatus.COMPLETED:
            return [f"Translation failed: {task.message}", *task.log]

        output_path = command.output_path or command.path.with_name(
            f"{command.path.stem}.{_language_tag(settings.dubbing.target_language)}.srt",
        )
        output_path.write_text(orchestrator.export_srt(task.task_id) or "", encoding="utf-8")
        return [
            f"Translated {len(task.subtitles)} cue(s) from {task.detected_language}",
            f"Written: {output_path}",
        ]

    def stages(self) -> list[str]:
        lines = ["#  stage           progress  message"]
        for index, stage in enumerate(DEFAULT_STAGES, start=1):
            lines.append(
                f"{index:<2} {stage.key:<15} {stage.progress_target:>7}%  {stage.message}",
            )
        return lines


async def _run_and_close(orchestrator: BatchOrchestrator) -> BatchRunSummary:
    try:
        return await orchestrator.run_batch()
    finally:
        await orchestrator.aclose()


def _apply_overrides(settings: Settings, command: BatchRunCommand) -> Settings:
    batch = settings.batch
    if command.parallel_limit is not None:
        batch = replace(batch, parallel_limit=command.parallel_limit)
    if command.max_retries is not None:
        batch = replace(batch, max_retries=command.max_retries)
    if command.auto_retry is not None:
        batch = replace(batch, auto_retry=command.auto_retry)

    simulation = settings.simulation
    if command.failure_probability is not None:
        simulation = replace(simulation, failure_probability=command.failure_probability)
    if command.seed is not None:
        simulation = replace(simulation, seed=command.seed)
    if command.live is not None:
        simulation = replace(simulation, enabled=not command.live)
    return replace(settings, batch=batch, simulation=simulation)


def _summary_line(summary: BatchRunSummary) -> str:
    return (
        "Batch summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"failed={summary.failed} retried={summary.retried} workers={summary.workers}"
    )


def _task_line(task: TaskRecord) -> str:
    return (
        f"{task.task_id} {task.status.value:<10} {task.progress:>3}% "
        f"{task.kind.value:<8} {task.size_label:>10}  {task.name} - {task.message}"
    )


def _export_completed(
    orchestrator: BatchOrchestrator,
    *,
    export_dir: Path,
    language: str,
) -> list[str]:
    lines: list[str] = []
    for task in orchestrator.tasks(TaskStatus.COMPLETED):
        content = orchestrator.export_srt(task.task_id)
        if content is None:
            continue
        export_dir.mkdir(parents=True, exist_ok=True)
        path = export_dir / f"{Path(task.name).stem}.{_language_tag(language)}.srt"
        path.write_text(content, encoding="utf-8")
        lines.append(f"Exported: {path}")
    return lines


def _language_tag(language: str) -> str:
    return language.strip().lower().replace(" ", "_") or "translated"
