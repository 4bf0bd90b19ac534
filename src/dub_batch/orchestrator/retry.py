"""Manual and automatic retry of failed tasks."""

from __future__ import annotations

import logging

from dub_batch.orchestrator.models import (
    AUTO_RETRYABLE_FAILURES,
    ConcurrencyConfig,
    StageOutcome,
    TaskRecord,
    TaskStatus,
)
from dub_batch.orchestrator.queue import QueueManager
from dub_batch.orchestrator.stages import StagePipeline

logger = logging.getLogger(__name__)

RETRYING_MESSAGE = "Retrying..."


class RetryController:
    """Puts an ``error`` task back to ``pending`` and runs it on its own."""

    def __init__(
        self,
        *,
        queue: QueueManager,
        pipeline: StagePipeline,
        config: ConcurrencyConfig,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.config = config

    def can_auto_retry(self, record: TaskRecord) -> bool:
        if not self.config.auto_retry or record.status != TaskStatus.ERROR:
            return False
        if record.retry_count >= self.config.max_retries:
            return False
        return record.failure_class is None or record.failure_class in AUTO_RETRYABLE_FAILURES

    async def retry(self, task_id: str, *, manual: bool = True) -> StageOutcome | None:
        """Re-run a failed task. Returns None when the task is not eligible.

        Manual retries ignore the ceiling; automatic ones honour it.
        """

        record = self.queue.get(task_id)
        if record.status != TaskStatus.ERROR:
            logger.info("Task %s is %s; retry ignored", task_id, record.status.value)
            return None
        if not manual and not self.can_auto_retry(record):
            return None

        retry_number = record.retry_count + 1
        self.queue.update(
            task_id,
            status=TaskStatus.PENDING,
            progress=0,
            stage=None,
            message=RETRYING_MESSAGE,
            retry_count=retry_number,
            log_line=f"Retry #{retry_number} ({'manual' if manual else 'automatic'})",
        )
        logger.info("Retrying task %s (#%d, manual=%s)", task_id, retry_number, manual)
        return await self.pipeline.run_stages(task_id)
