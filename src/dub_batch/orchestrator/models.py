"""Domain models for the batch task queue and stage execution."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

ALLOWED_PARALLEL_LIMITS: tuple[int, ...] = (1, 2, 3, 4, 6, 8)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.ERROR}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.ERROR: frozenset({TaskStatus.PENDING}),
}


class TaskKind(str, Enum):
    """Media classification assigned at intake."""

    VIDEO = "video"
    SUBTITLE = "subtitle"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    MALFORMED_RESPONSE = "malformed_response"
    INPUT_UNSUPPORTED = "input_unsupported"


AUTO_RETRYABLE_FAILURES: frozenset[FailureClass] = frozenset(
    {
        FailureClass.TIMEOUT,
        FailureClass.BACKEND_TRANSIENT,
        FailureClass.MALFORMED_RESPONSE,
    },
)


@dataclass(slots=True)
class SubtitleCue:
    """One timed subtitle line, original and translated."""

    cue_id: str
    start: float
    end: float
    original_text: str
    translated_text: str = ""
    emotion: str | None = None

    @property
    def display_text(self) -> str:
        return self.translated_text or self.original_text


@dataclass(slots=True)
class DubClip:
    """Synthesized speech for one cue."""

    cue_id: str
    start: float
    audio: bytes
    voice: str


@dataclass(frozen=True, slots=True)
class StageDescriptor:
    """Static description of one pipeline stage."""

    key: str
    progress_target: int
    message: str
    log_detail: str
    failure_probability: float = 0.0


@dataclass(slots=True)
class IntakeFile:
    """File metadata handed over by the intake collaborator."""

    name: str
    size_bytes: int
    mime_type: str = ""
    path: Path | None = None

    @classmethod
    def from_path(cls, path: Path) -> IntakeFile:
        """Build intake metadata from a file on disk."""

        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            size_bytes=path.stat().st_size,
            mime_type=mime_type or "",
            path=path,
        )


@dataclass(slots=True)
class TaskRecord:
    """Unit of work and its mutable state."""

    task_id: str
    name: str
    size_bytes: int
    size_label: str
    kind: TaskKind
    extension: str
    mime_type: str
    source_path: Path | None = None
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    message: str = ""
    stage: str | None = None
    log: list[str] = field(default_factory=list)
    retry_count: int = 0
    attempt: int = 0
    failure_class: FailureClass | None = None
    error: str | None = None
    subtitles: list[SubtitleCue] = field(default_factory=list)
    detected_language: str | None = None
    dub_clips: list[DubClip] = field(default_factory=list)
    output_path: Path | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class StageOutcome:
    """Result of one pipeline attempt for a task."""

    task_id: str
    ok: bool
    failed_stage: str | None = None
    error: str | None = None
    failure_class: FailureClass | None = None


@dataclass(slots=True)
class ConcurrencyConfig:
    """Batch parallelism and retry ceiling."""

    parallel_limit: int = 2
    max_retries: int = 0
    auto_retry: bool = False

    def validate(self) -> None:
        if self.parallel_limit not in ALLOWED_PARALLEL_LIMITS:
            raise ValueError(
                f"parallel_limit must be one of {ALLOWED_PARALLEL_LIMITS}, "
                f"got {self.parallel_limit!r}",
            )
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries!r}")


@dataclass(slots=True)
class BatchRunSummary:
    """Aggregate batch counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    workers: int = 0
