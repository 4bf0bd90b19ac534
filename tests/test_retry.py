from __future__ import annotations

import asyncio
from dataclasses import replace

import allure

from dub_batch.orchestrator.faults import ScriptedFaultPolicy
from dub_batch.orchestrator.models import (
    ConcurrencyConfig,
    FailureClass,
    IntakeFile,
    StageDescriptor,
    TaskStatus,
)
from dub_batch.orchestrator.retry import RETRYING_MESSAGE
from dub_batch.orchestrator.services import BatchOrchestrator

pytestmark = [
    allure.epic("Batch Runtime"),
    allure.feature("Failures & Retry"),
]


def _video(name: str = "a.mp4") -> IntakeFile:
    return IntakeFile(name=name, size_bytes=1024, mime_type="video/mp4")


def _failed_orchestrator(*, times: int | None = 1, **config) -> tuple[BatchOrchestrator, str]:
    orchestrator = BatchOrchestrator(
        config=ConcurrencyConfig(**config),
        fault_policy=ScriptedFaultPolicy([("a.mp4", "translate")], times=times),
    )
    (task,) = orchestrator.ingest([_video()])
    orchestrator.run_batch_sync()
    assert orchestrator.get(task.task_id).status == TaskStatus.ERROR
    return orchestrator, task.task_id


def test_manual_retry_ignores_ceiling_and_completes() -> None:
    orchestrator, task_id = _failed_orchestrator(max_retries=0, auto_retry=False)

    outcome = asyncio.run(orchestrator.retry(task_id))

    record = orchestrator.get(task_id)
    assert outcome is not None
    assert outcome.ok is True
    assert record.status == TaskStatus.COMPLETED
    assert record.progress == 100
    assert record.retry_count == 1
    assert record.failure_class is None
    assert record.error is None
    assert any("Retry #1 (manual)" in line for line in record.log)


def test_retry_resets_progress_before_first_stage() -> None:
    orchestrator, task_id = _failed_orchestrator()
    assert orchestrator.get(task_id).progress == 30
    seen: list[tuple[str, int]] = []

    class _Recorder:
        async def run(self, stage: StageDescriptor, context) -> None:
            record = orchestrator.get(task_id)
            seen.append((stage.key, record.progress))

    orchestrator.pipeline.executor = _Recorder()
    asyncio.run(orchestrator.retry(task_id))

    assert seen[0] == ("extract_audio", 0)
    assert [progress for _, progress in seen] == [0, 10, 30, 50, 75, 90]


def test_retry_marks_task_pending_with_retrying_message() -> None:
    orchestrator, task_id = _failed_orchestrator(times=None)
    snapshots = []

    original = orchestrator.pipeline.run_stages

    async def _spy(task_id_arg: str):
        snapshots.append(orchestrator.get(task_id_arg))
        return await original(task_id_arg)

    orchestrator.pipeline.run_stages = _spy
    asyncio.run(orchestrator.retry(task_id))

    assert snapshots[0].status == TaskStatus.PENDING
    assert snapshots[0].progress == 0
    assert snapshots[0].message == RETRYING_MESSAGE
    record = orchestrator.get(task_id)
    assert record.status == TaskStatus.ERROR
    assert record.retry_count == 1


def test_retry_of_non_error_task_is_ignored() -> None:
    orchestrator = BatchOrchestrator()
    (task,) = orchestrator.ingest([_video()])

    assert asyncio.run(orchestrator.retry(task.task_id)) is None
    assert orchestrator.get(task.task_id).retry_count == 0

    orchestrator.run_batch_sync()
    assert asyncio.run(orchestrator.retry(task.task_id)) is None
    assert orchestrator.get(task.task_id).status == TaskStatus.COMPLETED


def test_can_auto_retry_requires_flag_budget_and_retryable_class() -> None:
    orchestrator, task_id = _failed_orchestrator(max_retries=1, auto_retry=False)
    controller = orchestrator.retry_controller
    record = orchestrator.get(task_id)

    assert controller.can_auto_retry(record) is False

    orchestrator.configure(auto_retry=True)
    assert controller.can_auto_retry(record) is True
    assert controller.can_auto_retry(replace(record, retry_count=1)) is False

    record.failure_class = FailureClass.BILLING_OR_QUOTA
    assert controller.can_auto_retry(record) is False


def test_automatic_retry_call_refuses_when_not_eligible() -> None:
    orchestrator, task_id = _failed_orchestrator(max_retries=0, auto_retry=True)

    outcome = asyncio.run(orchestrator.retry_controller.retry(task_id, manual=False))

    assert outcome is None
    assert orchestrator.get(task_id).status == TaskStatus.ERROR
