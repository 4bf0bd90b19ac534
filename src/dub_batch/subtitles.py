"""SubRip (SRT) and WebVTT parsing, SRT export."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from dub_batch.orchestrator.models import SubtitleCue

logger = logging.getLogger(__name__)

# hours are optional: WebVTT allows MM:SS.mmm
TIMESTAMP_PATTERN = re.compile(r"(?:(\d+):)?(\d{1,2}):(\d{1,2})[.,](\d{1,3})")
_BLOCK_SEPARATOR = re.compile(r"\n\s*\n")
_VTT_SKIPPED_BLOCKS = ("NOTE", "STYLE", "REGION")


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``HH:MM:SS,mmm``."""

    total_ms = max(round(seconds * 1000), 0)
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def parse_timestamp(value: str) -> float:
    """Parse ``HH:MM:SS,mmm``, ``MM:SS.mmm`` or a bare number of seconds."""

    text = value.strip()
    match = TIMESTAMP_PATTERN.fullmatch(text)
    if match is None:
        try:
            return float(text)
        except ValueError as error:
            raise ValueError(f"Invalid timestamp format: {value!r}") from error
    hours, minutes, seconds, fraction = match.groups()
    millis = int(fraction.ljust(3, "0"))
    return int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds) + millis / 1000


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\ufeff", "").strip()


def _time_range(line: str) -> tuple[float, float]:
    start_raw, _, end_raw = line.partition("-->")
    # WebVTT cue settings may follow the end timestamp
    end_parts = end_raw.split()
    return parse_timestamp(start_raw), parse_timestamp(end_parts[0] if end_parts else end_raw)


def parse_subtitles(text: str, *, extension: str = "srt") -> list[SubtitleCue]:
    """Parse subtitle text with the parser matching the file extension."""

    if extension.strip().lstrip(".").lower() == "vtt":
        return parse_vtt(text)
    return parse_srt(text)


def parse_srt(text: str) -> list[SubtitleCue]:
    """Parse SRT text; malformed blocks are skipped with a warning."""

    normalized = _normalize(text)
    if not normalized:
        return []

    cues: list[SubtitleCue] = []
    for index, block in enumerate(_BLOCK_SEPARATOR.split(normalized), start=1):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            logger.warning("Skipping short SRT block #%d", index)
            continue
        cue_id = lines[0].strip() or str(index)
        if "-->" not in lines[1]:
            logger.warning("Skipping SRT block %s without a time range", cue_id)
            continue
        try:
            start, end = _time_range(lines[1])
        except ValueError as error:
            logger.warning("Skipping SRT block %s: %s", cue_id, error)
            continue
        cues.append(
            SubtitleCue(
                cue_id=cue_id,
                start=start,
                end=end,
                original_text="\n".join(line.rstrip() for line in lines[2:]),
            ),
        )
    return cues


def parse_vtt(text: str) -> list[SubtitleCue]:
    """Parse WebVTT text.

    The ``WEBVTT`` header and NOTE, STYLE and REGION blocks are skipped. Cue
    identifiers are optional; cues without one are numbered in order.
    """

    normalized = _normalize(text)
    if not normalized:
        return []

    blocks = _BLOCK_SEPARATOR.split(normalized)
    if blocks[0].startswith("WEBVTT"):
        blocks = blocks[1:]
    else:
        logger.warning("WebVTT text has no WEBVTT header")

    cues: list[SubtitleCue] = []
    for index, block in enumerate(blocks, start=1):
        lines = block.strip().split("\n")
        if lines[0].split(" ", 1)[0] in _VTT_SKIPPED_BLOCKS:
            continue
        timing_index = next((n for n, line in enumerate(lines[:2]) if "-->" in line), None)
        if timing_index is None:
            logger.warning("Skipping VTT block #%d without a time range", index)
            continue
        text_lines = [line.rstrip() for line in lines[timing_index + 1 :]]
        if not text_lines:
            logger.warning("Skipping VTT block #%d without text", index)
            continue
        try:
            start, end = _time_range(lines[timing_index])
        except ValueError as error:
            logger.warning("Skipping VTT block #%d: %s", index, error)
            continue
        cue_id = lines[0].strip() if timing_index == 1 else ""
        cues.append(
            SubtitleCue(
                cue_id=cue_id or str(len(cues) + 1),
                start=start,
                end=end,
                original_text="\n".join(text_lines),
            ),
        )
    return cues


def render_srt(cues: Iterable[SubtitleCue]) -> str:
    """Render cues as SRT, preferring translated text."""

    blocks = [
        f"{cue.cue_id}\n"
        f"{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n"
        f"{cue.display_text}\n"
        for cue in cues
    ]
    return "\n".join(blocks)
