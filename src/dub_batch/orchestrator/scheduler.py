"""Bounded worker pool that pulls pending tasks through the stage pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator

from dub_batch.orchestrator.errors import BatchAlreadyRunningError
from dub_batch.orchestrator.models import (
    ALLOWED_PARALLEL_LIMITS,
    BatchRunSummary,
    ConcurrencyConfig,
    StageOutcome,
    TaskStatus,
)
from dub_batch.orchestrator.queue import QueueManager
from dub_batch.orchestrator.retry import RetryController
from dub_batch.orchestrator.stages import StagePipeline

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Runs one batch over a snapshot of pending tasks.

    Workers share a single iterator over the snapshot, so a worker that
    finishes early pulls the next task instead of idling. Tasks enqueued
    after the snapshot wait for the next batch.
    """

    def __init__(
        self,
        *,
        queue: QueueManager,
        pipeline: StagePipeline,
        retry_controller: RetryController,
        config: ConcurrencyConfig,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.retry_controller = retry_controller
        self.config = config
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_batch(self, parallel_limit: int | None = None) -> BatchRunSummary:
        if self._running:
            raise BatchAlreadyRunningError("A batch is already running.")
        limit = self.config.parallel_limit if parallel_limit is None else parallel_limit
        if limit not in ALLOWED_PARALLEL_LIMITS:
            raise ValueError(
                f"parallel_limit must be one of {ALLOWED_PARALLEL_LIMITS}, got {limit!r}",
            )

        snapshot = [record.task_id for record in self.queue.by_status(TaskStatus.PENDING)]
        summary = BatchRunSummary()
        if not snapshot:
            logger.info("Batch skipped: no pending tasks")
            return summary

        summary.workers = min(limit, len(snapshot))
        self._running = True
        self.queue.claim(snapshot)
        logger.info("Batch started: tasks=%d workers=%d", len(snapshot), summary.workers)
        work = iter(snapshot)
        try:
            await asyncio.gather(
                *(self._worker(number, work, summary) for number in range(summary.workers)),
            )
        finally:
            self.queue.release(snapshot)
            self._running = False

        logger.info(
            "Batch finished: processed=%d succeeded=%d failed=%d retried=%d",
            summary.processed,
            summary.succeeded,
            summary.failed,
            summary.retried,
        )
        return summary

    def run_batch_sync(self, parallel_limit: int | None = None) -> BatchRunSummary:
        return asyncio.run(self.run_batch(parallel_limit))

    async def _worker(
        self,
        number: int,
        work: Iterator[str],
        summary: BatchRunSummary,
    ) -> None:
        for task_id in work:
            logger.debug("Worker %d picked task %s", number, task_id)
            try:
                outcome = await self._process(task_id, summary)
            except Exception:
                logger.exception("Worker %d: task %s crashed", number, task_id)
                summary.failed += 1
                continue
            if outcome.ok:
                summary.succeeded += 1
            else:
                summary.failed += 1

    async def _process(self, task_id: str, summary: BatchRunSummary) -> StageOutcome:
        summary.processed += 1
        outcome = await self.pipeline.run_stages(task_id)
        while not outcome.ok and self.retry_controller.can_auto_retry(self.queue.get(task_id)):
            retried = await self.retry_controller.retry(task_id, manual=False)
            if retried is None:
                break
            summary.retried += 1
            outcome = retried
        return outcome
