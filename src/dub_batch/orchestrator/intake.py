"""File intake classification."""

from __future__ import annotations

from uuid import uuid4

from dub_batch.orchestrator.models import IntakeFile, TaskKind

VIDEO_EXTENSIONS: frozenset[str] = frozenset(
    {"mp4", "mkv", "avi", "wmv", "flv", "mov", "webm", "m4v"},
)
SUBTITLE_EXTENSIONS: frozenset[str] = frozenset({"srt", "vtt"})
_SUBTITLE_MIME_TYPES: frozenset[str] = frozenset(
    {"application/x-subrip", "text/vtt", "text/srt"},
)


def file_extension(name: str) -> str:
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].strip().lower()


def classify_kind(file: IntakeFile) -> TaskKind | None:
    """Map extension first, then MIME type, to a task kind."""

    extension = file_extension(file.name)
    if extension in SUBTITLE_EXTENSIONS:
        return TaskKind.SUBTITLE
    if extension in VIDEO_EXTENSIONS:
        return TaskKind.VIDEO
    mime_type = file.mime_type.strip().lower()
    if mime_type in _SUBTITLE_MIME_TYPES:
        return TaskKind.SUBTITLE
    if mime_type.startswith("video/"):
        return TaskKind.VIDEO
    return None


def format_size(size_bytes: int) -> str:
    return f"{max(size_bytes, 0) / (1024 * 1024):.2f} MB"


def new_task_id() -> str:
    return uuid4().hex[:12]
