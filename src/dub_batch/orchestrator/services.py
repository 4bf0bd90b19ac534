"""Facade wiring queue, pipeline, scheduler, retry, and event log together."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Iterable, Sequence
from dataclasses import replace
from pathlib import Path

from dub_batch.config import DubbingSettings, Settings
from dub_batch.orchestrator.backend import (
    FfmpegMedia,
    HttpAiBackend,
    MediaBackends,
    SimulatedBackend,
)
from dub_batch.orchestrator.errors import ConfigLockedError
from dub_batch.orchestrator.event_log import DEFAULT_LOG_CAPACITY, EventLog
from dub_batch.orchestrator.faults import FaultPolicy, NoFaults, RandomFaultPolicy
from dub_batch.orchestrator.models import (
    BatchRunSummary,
    ConcurrencyConfig,
    IntakeFile,
    StageDescriptor,
    StageOutcome,
    TaskRecord,
    TaskStatus,
)
from dub_batch.orchestrator.queue import QueueManager
from dub_batch.orchestrator.retry import RetryController
from dub_batch.orchestrator.scheduler import BatchScheduler
from dub_batch.orchestrator.stages import DEFAULT_STAGES, MediaStageExecutor, StagePipeline
from dub_batch.subtitles import render_srt

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Read/write API consumed by the intake and display collaborators."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        config: ConcurrencyConfig | None = None,
        backends: MediaBackends | None = None,
        dubbing: DubbingSettings | None = None,
        stages: Sequence[StageDescriptor] = DEFAULT_STAGES,
        fault_policy: FaultPolicy | None = None,
        log_capacity: int = DEFAULT_LOG_CAPACITY,
    ) -> None:
        self.config = config or ConcurrencyConfig()
        self.config.validate()
        self.event_log = EventLog(capacity=log_capacity)
        self.queue = QueueManager(self.event_log)
        self.backends = backends
        executor = None
        if backends is not None:
            # without dubbing settings nothing is written to disk
            output_dir = dubbing.output_dir if dubbing is not None else None
            dubbing = dubbing or DubbingSettings()
            executor = MediaStageExecutor(
                backends=backends,
                queue=self.queue,
                output_dir=output_dir,
                target_language=dubbing.target_language,
                voice=dubbing.voice,
                sample_rate=dubbing.sample_rate,
            )
        self.pipeline = StagePipeline(
            queue=self.queue,
            executor=executor,
            stages=stages,
            fault_policy=fault_policy,
        )
        self.retry_controller = RetryController(
            queue=self.queue,
            pipeline=self.pipeline,
            config=self.config,
        )
        self.scheduler = BatchScheduler(
            queue=self.queue,
            pipeline=self.pipeline,
            retry_controller=self.retry_controller,
            config=self.config,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backends: MediaBackends | None = None,
        fault_policy: FaultPolicy | None = None,
    ) -> BatchOrchestrator:
        """Build an orchestrator with simulated or live backends."""

        settings.validate()
        simulation = settings.simulation
        rng = random.Random(simulation.seed)  # noqa: S311
        stages: tuple[StageDescriptor, ...] = DEFAULT_STAGES
        if backends is None and simulation.enabled:
            backends = SimulatedBackend(
                min_latency_seconds=simulation.stage_min_seconds,
                max_latency_seconds=simulation.stage_max_seconds,
                rng=rng,
            ).backends()
        elif backends is None:
            backends = _live_backends(settings)
        if simulation.enabled and simulation.failure_probability > 0:
            stages = tuple(
                replace(stage, failure_probability=simulation.failure_probability)
                for stage in DEFAULT_STAGES
            )
            fault_policy = fault_policy or RandomFaultPolicy(rng=rng)

        return cls(
            config=settings.batch.concurrency(),
            backends=backends,
            dubbing=settings.dubbing,
            stages=stages,
            fault_policy=fault_policy or NoFaults(),
            log_capacity=settings.batch.log_capacity,
        )

    def ingest(self, files: Iterable[IntakeFile] | None) -> list[TaskRecord]:
        return self.queue.enqueue(files)

    def ingest_paths(self, paths: Iterable[Path]) -> list[TaskRecord]:
        files: list[IntakeFile] = []
        for path in paths:
            if not path.is_file():
                logger.warning("Skipping %s: not a file", path)
                continue
            files.append(IntakeFile.from_path(path))
        return self.queue.enqueue(files)

    def remove(self, task_id: str) -> bool:
        return self.queue.remove(task_id)

    def tasks(self, status: TaskStatus | None = None) -> list[TaskRecord]:
        if status is None:
            return self.queue.query()
        return self.queue.by_status(status)

    def get(self, task_id: str) -> TaskRecord:
        return self.queue.get(task_id)

    def task_log(self, task_id: str) -> list[str]:
        return self.queue.get(task_id).log

    def global_log(self) -> list[str]:
        return self.event_log.lines()

    def configure(
        self,
        *,
        parallel_limit: int | None = None,
        max_retries: int | None = None,
        auto_retry: bool | None = None,
    ) -> ConcurrencyConfig:
        """Change concurrency settings; refused while anything is processing."""

        if self.scheduler.running or self.queue.any_processing():
            raise ConfigLockedError(
                "Concurrency settings are locked while tasks are processing.",
            )
        current = self.config
        candidate = ConcurrencyConfig(
            parallel_limit=current.parallel_limit if parallel_limit is None else parallel_limit,
            max_retries=current.max_retries if max_retries is None else max_retries,
            auto_retry=current.auto_retry if auto_retry is None else auto_retry,
        )
        candidate.validate()
        # scheduler and retry controller hold this same object
        self.config.parallel_limit = candidate.parallel_limit
        self.config.max_retries = candidate.max_retries
        self.config.auto_retry = candidate.auto_retry
        return self.config

    async def run_batch(self, parallel_limit: int | None = None) -> BatchRunSummary:
        return await self.scheduler.run_batch(parallel_limit)

    def run_batch_sync(self, parallel_limit: int | None = None) -> BatchRunSummary:
        return asyncio.run(self.run_batch(parallel_limit))

    async def retry(self, task_id: str) -> StageOutcome | None:
        return await self.retry_controller.retry(task_id, manual=True)

    def export_srt(self, task_id: str) -> str | None:
        """Translated SRT for a completed task, else None."""

        record = self.queue.get(task_id)
        if record.status != TaskStatus.COMPLETED or not record.subtitles:
            return None
        return render_srt(record.subtitles)

    async def aclose(self) -> None:
        if self.backends is None:
            return
        closed: set[int] = set()
        for backend in (
            self.backends.extractor,
            self.backends.transcriber,
            self.backends.translator,
            self.backends.synthesizer,
            self.backends.muxer,
        ):
            closer = getattr(backend, "aclose", None)
            if closer is None or id(backend) in closed:
                continue
            closed.add(id(backend))
            await closer()


def _live_backends(settings: Settings) -> MediaBackends:
    http = HttpAiBackend(
        base_url=settings.backend.api_url,
        api_key=settings.backend.api_key,
        transcribe_model=settings.backend.transcribe_model,
        translate_model=settings.backend.translate_model,
        tts_model=settings.backend.tts_model,
        timeout_seconds=settings.backend.request_timeout_seconds,
        max_retries=settings.backend.max_http_retries,
    )
    media = FfmpegMedia(binary=settings.dubbing.ffmpeg_binary)
    return MediaBackends(
        extractor=media,
        transcriber=http,
        translator=http,
        synthesizer=http,
        muxer=media,
    )
