"""Fault injection policies consulted before each stage runs."""

from __future__ import annotations

import random
from collections import Counter
from collections.abc import Iterable
from typing import Protocol

from dub_batch.orchestrator.models import StageDescriptor, TaskRecord

SIMULATED_FAILURE_REASON = "simulated backend fault"


class FaultPolicy(Protocol):
    """Decides whether a stage should fail for a task before it runs."""

    def should_fail(self, task: TaskRecord, stage: StageDescriptor) -> str | None:
        """Return a failure reason, or None to let the stage run."""


class NoFaults:
    """Never injects a failure."""

    def should_fail(self, task: TaskRecord, stage: StageDescriptor) -> str | None:
        return None


class RandomFaultPolicy:
    """Draws against each stage's ``failure_probability``."""

    def __init__(
        self,
        *,
        rng: random.Random | None = None,
        probability_override: float | None = None,
    ) -> None:
        self._rng = rng or random.Random()  # noqa: S311
        self._probability_override = probability_override

    def should_fail(self, task: TaskRecord, stage: StageDescriptor) -> str | None:
        probability = (
            stage.failure_probability
            if self._probability_override is None
            else self._probability_override
        )
        if probability > 0 and self._rng.random() < probability:
            return f"{SIMULATED_FAILURE_REASON} during {stage.key}"
        return None


class ScriptedFaultPolicy:
    """Fails chosen ``(task, stage)`` pairs a fixed number of times.

    A task is matched by id or by file name. ``times=None`` fails forever.
    """

    def __init__(
        self,
        failures: Iterable[tuple[str, str]] = (),
        *,
        times: int | None = 1,
    ) -> None:
        self._targets = set(failures)
        self._times = times
        self._fired: Counter[tuple[str, str]] = Counter()
        self.calls: list[tuple[str, str]] = []

    def should_fail(self, task: TaskRecord, stage: StageDescriptor) -> str | None:
        self.calls.append((task.task_id, stage.key))
        for key in ((task.task_id, stage.key), (task.name, stage.key)):
            if key not in self._targets:
                continue
            if self._times is not None and self._fired[key] >= self._times:
                return None
            self._fired[key] += 1
            return f"{SIMULATED_FAILURE_REASON} during {stage.key}"
        return None
