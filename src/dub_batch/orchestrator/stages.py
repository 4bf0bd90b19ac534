"""Ordered stage pipeline executed once per task attempt."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dub_batch.orchestrator.backend.base import (
    RECOGNITION_SAMPLE_RATE,
    ExtractedAudio,
    MediaBackends,
    MediaSource,
)
from dub_batch.orchestrator.errors import BackendError, DubBatchError, StageError
from dub_batch.orchestrator.event_log import COMPLETION_MARKER
from dub_batch.orchestrator.failure_classifier import classify_stage_failure
from dub_batch.orchestrator.faults import FaultPolicy, NoFaults
from dub_batch.orchestrator.models import (
    DubClip,
    StageDescriptor,
    StageOutcome,
    SubtitleCue,
    TaskKind,
    TaskRecord,
    TaskStatus,
)
from dub_batch.orchestrator.queue import QueueManager
from dub_batch.subtitles import parse_subtitles, render_srt

logger = logging.getLogger(__name__)

DEFAULT_STAGES: tuple[StageDescriptor, ...] = (
    StageDescriptor(
        key="extract_audio",
        progress_target=10,
        message="Extracting audio track...",
        log_detail="Audio extracted to 16 kHz mono PCM",
    ),
    StageDescriptor(
        key="transcribe",
        progress_target=30,
        message="Recognizing speech...",
        log_detail="Transcript segments ready",
    ),
    StageDescriptor(
        key="translate",
        progress_target=50,
        message="Translating dialogue...",
        log_detail="Translation and emotion tags ready",
    ),
    StageDescriptor(
        key="synthesize",
        progress_target=75,
        message="Generating voice-over...",
        log_detail="Voice-over clips generated",
    ),
    StageDescriptor(
        key="mux",
        progress_target=90,
        message="Muxing final master...",
        log_detail="Subtitles and dub track muxed",
    ),
    StageDescriptor(
        key="finalize",
        progress_target=100,
        message="Finalizing outputs...",
        log_detail="Outputs finalized",
    ),
)

COMPLETED_MESSAGE = "Processing completed successfully"


def validate_stages(stages: Sequence[StageDescriptor]) -> None:
    """Raise ValueError unless stages form a well-ordered pipeline."""

    if not stages:
        raise ValueError("Pipeline needs at least one stage.")
    keys = [stage.key for stage in stages]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Stage keys must be unique: {keys}")
    previous = 0
    for stage in stages:
        if stage.progress_target <= previous:
            raise ValueError(
                f"Stage {stage.key!r} progress {stage.progress_target} must exceed {previous}",
            )
        if not 0.0 <= stage.failure_probability <= 1.0:
            raise ValueError(f"Stage {stage.key!r} failure probability must be in [0, 1]")
        previous = stage.progress_target
    if previous != 100:
        raise ValueError(f"Last stage must reach progress 100, got {previous}")


@dataclass(slots=True)
class StageContext:
    """Artifacts produced by one attempt of one task."""

    task: TaskRecord
    audio: ExtractedAudio | None = None
    cues: list[SubtitleCue] = field(default_factory=list)
    clips: list[DubClip] = field(default_factory=list)
    subtitles_path: Path | None = None
    output_path: Path | None = None

    @property
    def source(self) -> MediaSource:
        return MediaSource(name=self.task.name, path=self.task.source_path)


StageFn = Callable[[StageContext], Awaitable[None]]


class MediaStageExecutor:
    """Runs the stage work by calling the configured backends."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        backends: MediaBackends,
        queue: QueueManager,
        output_dir: Path | None,
        target_language: str = "Arabic",
        voice: str = "Kore",
        sample_rate: int = RECOGNITION_SAMPLE_RATE,
    ) -> None:
        self.backends = backends
        self.queue = queue
        self.output_dir = output_dir
        self.target_language = target_language
        self.voice = voice
        self.sample_rate = sample_rate
        self._handlers: dict[str, StageFn] = {
            "extract_audio": self.extract_audio,
            "transcribe": self.transcribe,
            "translate": self.translate,
            "synthesize": self.synthesize,
            "mux": self.mux,
            "finalize": self.finalize,
        }

    async def run(self, stage: StageDescriptor, context: StageContext) -> None:
        handler = self._handlers.get(stage.key)
        if handler is None:
            raise StageError(stage.key, "no executor registered for this stage")
        await handler(context)

    async def extract_audio(self, context: StageContext) -> None:
        if context.task.kind == TaskKind.SUBTITLE:
            self.queue.append_log(context.task.task_id, "Subtitle input: no audio to extract")
            return
        context.audio = await self.backends.extractor.extract(
            context.source,
            sample_rate=self.sample_rate,
        )

    async def transcribe(self, context: StageContext) -> None:
        task = context.task
        if task.kind == TaskKind.SUBTITLE:
            if task.source_path is None:
                raise BackendError(f"Subtitle file {task.name} has no path", transient=False)
            context.cues = parse_subtitles(
                task.source_path.read_text(encoding="utf-8-sig"),
                extension=task.extension,
            )
        else:
            if context.audio is None:
                raise StageError("transcribe", "no extracted audio available")
            context.cues = await self.backends.transcriber.transcribe(context.audio)
        if not context.cues:
            raise StageError("transcribe", "no subtitle cues produced")
        self.queue.update(
            task.task_id,
            subtitles=context.cues,
            log_line=f"Transcript has {len(context.cues)} cue(s)",
        )

    async def translate(self, context: StageContext) -> None:
        batch = await self.backends.translator.translate(
            context.cues,
            target_language=self.target_language,
        )
        translated_ids = {line.cue_id for line in batch.lines}
        missing = sum(1 for cue in context.cues if cue.cue_id not in translated_ids)
        context.cues = batch.apply(context.cues)
        self.queue.update(
            context.task.task_id,
            subtitles=context.cues,
            detected_language=batch.source_language,
            log_line=f"Detected source language: {batch.source_language}",
        )
        if missing > 0:
            self.queue.append_log(
                context.task.task_id,
                f"[WARN] {missing} cue(s) had no translation; placeholder used",
            )

    async def synthesize(self, context: StageContext) -> None:
        """Generate one clip per cue; a missing clip is logged, not fatal."""

        clips: list[DubClip] = []
        for cue in context.cues:
            try:
                audio = await self.backends.synthesizer.synthesize(
                    cue.display_text,
                    voice=self.voice,
                    emotion=cue.emotion,
                )
            except BackendError as error:
                logger.warning("Voice synthesis failed for cue %s: %s", cue.cue_id, error)
                audio = None
            if audio is None:
                self.queue.append_log(
                    context.task.task_id,
                    f"[WARN] No voice-over for cue {cue.cue_id}; skipped",
                )
                continue
            clips.append(
                DubClip(cue_id=cue.cue_id, start=cue.start, audio=audio, voice=self.voice),
            )
        context.clips = clips
        self.queue.update(context.task.task_id, dub_clips=clips)

    async def mux(self, context: StageContext) -> None:
        """Write the translated SRT and remux video; skipped without an output dir."""

        task = context.task
        if self.output_dir is None:
            self.queue.append_log(task.task_id, "No output directory; outputs kept in memory")
            return
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stem = Path(task.name).stem
        subtitles_path = self.output_dir / f"{task.task_id}_{stem}.translated.srt"
        subtitles_path.write_text(render_srt(context.cues), encoding="utf-8")
        context.subtitles_path = subtitles_path
        if task.kind == TaskKind.SUBTITLE:
            context.output_path = subtitles_path
            return
        context.output_path = await self.backends.muxer.mux(
            source=context.source,
            subtitles_path=subtitles_path,
            clips=context.clips,
            output_dir=self.output_dir,
        )

    async def finalize(self, context: StageContext) -> None:
        self.queue.update(
            context.task.task_id,
            output_path=context.output_path,
            log_line=(
                f"{len(context.cues)} cue(s), {len(context.clips)} voice clip(s), "
                f"output: {context.output_path}"
            ),
        )


class StagePipeline:
    """Runs stages in order for one task; the first failure ends the attempt."""

    def __init__(
        self,
        *,
        queue: QueueManager,
        executor: MediaStageExecutor | None = None,
        stages: Sequence[StageDescriptor] = DEFAULT_STAGES,
        fault_policy: FaultPolicy | None = None,
    ) -> None:
        validate_stages(stages)
        self.queue = queue
        self.executor = executor
        self.stages: tuple[StageDescriptor, ...] = tuple(stages)
        self.fault_policy: FaultPolicy = fault_policy or NoFaults()

    async def run_stages(self, task_id: str) -> StageOutcome:
        """Execute every stage for one attempt. Never raises for stage failures."""

        task = self.queue.get(task_id)
        if task.status != TaskStatus.PENDING:
            logger.warning("Task %s is %s, not pending; skipping", task_id, task.status.value)
            return StageOutcome(task_id=task_id, ok=False, error=f"task is {task.status.value}")
        task = self.queue.update(
            task_id,
            status=TaskStatus.PROCESSING,
            attempt=task.attempt + 1,
            failure_class=None,
            error=None,
            log_line=f"Attempt {task.attempt + 1} started",
        )
        context = StageContext(task=task)

        for stage in self.stages:
            self.queue.update(task_id, stage=stage.key, message=stage.message)
            try:
                reason = self.fault_policy.should_fail(context.task, stage)
                if reason is not None:
                    raise StageError(stage.key, reason)
                if self.executor is not None:
                    await self.executor.run(stage, context)
            except (DubBatchError, OSError, TimeoutError) as error:
                return self._fail(task_id, stage=stage, error=error)
            except Exception as error:  # noqa: BLE001
                logger.exception("Task %s: unexpected error in stage %s", task_id, stage.key)
                return self._fail(task_id, stage=stage, error=error)

            context.task = self.queue.update(
                task_id,
                progress=stage.progress_target,
                message=stage.message,
                log_line=stage.log_detail,
            )

        final = self.queue.update(
            task_id,
            status=TaskStatus.COMPLETED,
            progress=100,
            stage=None,
            message=COMPLETED_MESSAGE,
            log_line=COMPLETED_MESSAGE,
        )
        self.queue.event_log.append(f"{COMPLETION_MARKER} {final.name}")
        return StageOutcome(task_id=task_id, ok=True)

    def _fail(self, task_id: str, *, stage: StageDescriptor, error: BaseException) -> StageOutcome:
        if isinstance(error, StageError):
            reason = error.reason
        else:
            reason = str(error) or type(error).__name__
        classification = classify_stage_failure(stage=stage.key, error=_unwrap(error))
        message = f"Failed at {stage.key}: {reason}"
        record = self.queue.update(
            task_id,
            status=TaskStatus.ERROR,
            message=message,
            error=reason,
            failure_class=classification.failure_class,
            log_line=f"[ERROR] {message} ({classification.describe()})",
        )
        self.queue.event_log.append(f"[CRITICAL] {record.name}: {message}")
        logger.warning("Task %s failed at %s: %s", task_id, stage.key, reason)
        return StageOutcome(
            task_id=task_id,
            ok=False,
            failed_stage=stage.key,
            error=reason,
            failure_class=classification.failure_class,
        )


def _unwrap(error: BaseException) -> BaseException:
    if isinstance(error, StageError) and isinstance(error.__cause__, Exception):
        return error.__cause__
    if isinstance(error, StageError):
        return RuntimeError(error.reason)
    return error
