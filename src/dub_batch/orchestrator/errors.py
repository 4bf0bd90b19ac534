"""Exception hierarchy for the batch orchestrator."""

from __future__ import annotations


class DubBatchError(Exception):
    """Base error for the orchestrator."""


class BackendError(DubBatchError):
    """Backend call failure with retryability hint."""

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class MalformedResponseError(BackendError):
    """Backend answered, but the body could not be parsed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=True)


class StageError(DubBatchError):
    """Pipeline stage failure."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"Stage {stage} failed: {message}")
        self.stage = stage
        self.reason = message


class InvalidTransitionError(DubBatchError):
    """Task status change outside the allowed state machine."""


class UnknownTaskError(DubBatchError, KeyError):
    """Task id is not present in the queue."""


class ConfigLockedError(DubBatchError):
    """Concurrency settings changed while tasks are processing."""


class BatchAlreadyRunningError(DubBatchError):
    """A second batch was started while one is in flight."""
