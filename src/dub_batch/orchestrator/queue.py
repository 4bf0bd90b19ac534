"""In-memory task queue shared by intake, scheduler, and retry controller."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import fields, replace
from typing import Any

from dub_batch.orchestrator.errors import InvalidTransitionError, UnknownTaskError
from dub_batch.orchestrator.event_log import EventLog
from dub_batch.orchestrator.intake import classify_kind, file_extension, format_size, new_task_id
from dub_batch.orchestrator.models import (
    ALLOWED_TRANSITIONS,
    IntakeFile,
    SubtitleCue,
    TaskRecord,
    TaskStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

PENDING_MESSAGE = "Waiting for processing..."
_IMMUTABLE_FIELDS = frozenset(
    {"task_id", "name", "size_bytes", "size_label", "kind", "extension", "created_at"},
)
_MUTABLE_FIELDS = frozenset(f.name for f in fields(TaskRecord)) - _IMMUTABLE_FIELDS


def stamp(message: str) -> str:
    return f"[{utc_now().strftime('%H:%M:%S')}] {message}"


class QueueManager:
    """Owns task records; every mutation goes through :meth:`update`.

    All access is serialized by one re-entrant lock, so callers on the event
    loop and on worker threads see consistent records. Reads return copies.
    """

    def __init__(self, event_log: EventLog) -> None:
        self._event_log = event_log
        self._tasks: dict[str, TaskRecord] = {}
        self._claimed: set[str] = set()
        self._lock = threading.RLock()

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def enqueue(self, files: Iterable[IntakeFile] | None) -> list[TaskRecord]:
        """Create one pending task per recognized file."""

        created: list[TaskRecord] = []
        for file in list(files or ()):
            kind = classify_kind(file)
            if kind is None:
                logger.warning("Skipping unsupported file %s (%s)", file.name, file.mime_type)
                continue
            extension = file_extension(file.name)
            created.append(
                TaskRecord(
                    task_id=new_task_id(),
                    name=file.name,
                    size_bytes=file.size_bytes,
                    size_label=format_size(file.size_bytes),
                    kind=kind,
                    extension=extension.upper(),
                    mime_type=file.mime_type,
                    source_path=file.path,
                    message=PENDING_MESSAGE,
                    log=[
                        stamp(f"File received: {file.name}"),
                        stamp(f"File type: {file.mime_type or extension or 'unknown'}"),
                    ],
                ),
            )

        if not created:
            return []
        with self._lock:
            for record in created:
                self._tasks[record.task_id] = record
            snapshots = [_snapshot(record) for record in created]
        self._event_log.append(f"[SYSTEM] Ingested {len(created)} new file(s)")
        return snapshots

    def remove(self, task_id: str) -> bool:
        """Drop a pending task that no batch has claimed; no-op otherwise."""

        with self._lock:
            record = self._tasks.get(task_id)
            if record is None or record.status != TaskStatus.PENDING:
                return False
            if task_id in self._claimed:
                return False
            del self._tasks[task_id]
        logger.debug("Removed task %s", task_id)
        return True

    def get(self, task_id: str) -> TaskRecord:
        with self._lock:
            record = self._tasks.get(task_id)
            if record is None:
                raise UnknownTaskError(task_id)
            return _snapshot(record)

    def query(
        self,
        predicate: Callable[[TaskRecord], bool] | None = None,
    ) -> list[TaskRecord]:
        with self._lock:
            snapshots = [_snapshot(record) for record in self._tasks.values()]
        if predicate is None:
            return snapshots
        return [record for record in snapshots if predicate(record)]

    def by_status(self, *statuses: TaskStatus) -> list[TaskRecord]:
        wanted = set(statuses)
        return self.query(lambda record: record.status in wanted)

    def any_processing(self) -> bool:
        with self._lock:
            return any(r.status == TaskStatus.PROCESSING for r in self._tasks.values())

    def update(
        self,
        task_id: str,
        *,
        log_line: str | None = None,
        **changes: Any,
    ) -> TaskRecord:
        """Merge ``changes`` into one record atomically."""

        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        with self._lock:
            record = self._tasks.get(task_id)
            if record is None:
                raise UnknownTaskError(task_id)

            new_status = changes.get("status", record.status)
            if new_status != record.status:
                if new_status not in ALLOWED_TRANSITIONS[record.status]:
                    raise InvalidTransitionError(
                        f"Task {task_id}: {record.status.value} -> {new_status.value} "
                        "is not allowed",
                    )
            if "progress" in changes:
                _check_progress(record, new_status=new_status, progress=changes["progress"])

            for name, value in changes.items():
                setattr(record, name, value)
            if log_line is not None:
                record.log.append(stamp(log_line))
            record.updated_at = utc_now()
            return _snapshot(record)

    def append_log(self, task_id: str, line: str) -> None:
        self.update(task_id, log_line=line)

    def claim(self, task_ids: Iterable[str]) -> None:
        with self._lock:
            self._claimed.update(task_ids)

    def release(self, task_ids: Iterable[str]) -> None:
        with self._lock:
            self._claimed.difference_update(task_ids)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)


def _check_progress(record: TaskRecord, *, new_status: TaskStatus, progress: int) -> None:
    if not 0 <= progress <= 100:
        raise ValueError(f"Task {record.task_id}: progress out of range: {progress!r}")
    if new_status == TaskStatus.PENDING:
        return
    if progress < record.progress:
        raise InvalidTransitionError(
            f"Task {record.task_id}: progress may not decrease "
            f"({record.progress} -> {progress}) within an attempt",
        )


def _snapshot(record: TaskRecord) -> TaskRecord:
    return replace(
        record,
        log=list(record.log),
        subtitles=[_copy_cue(cue) for cue in record.subtitles],
        dub_clips=list(record.dub_clips),
    )


def _copy_cue(cue: SubtitleCue) -> SubtitleCue:
    return replace(cue)
