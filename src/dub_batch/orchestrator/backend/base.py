"""Backend interfaces for pipeline stage execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from dub_batch.orchestrator.models import DubClip, SubtitleCue

RECOGNITION_SAMPLE_RATE = 16_000
DEFAULT_EMOTION = "calm"
UNTRANSLATED_PLACEHOLDER = "[untranslated]"


@dataclass(slots=True)
class MediaSource:
    """Input handed to audio extraction."""

    name: str
    path: Path | None = None
    data: bytes | None = None


@dataclass(slots=True)
class ExtractedAudio:
    """Mono PCM audio packaged as a WAV container."""

    wav_bytes: bytes
    sample_rate: int = RECOGNITION_SAMPLE_RATE
    channels: int = 1
    mime_type: str = "audio/wav"
    path: Path | None = None


@dataclass(slots=True)
class TranslatedLine:
    """One translation record returned by the translator."""

    cue_id: str
    translated_text: str
    emotion: str


@dataclass(slots=True)
class TranslationBatch:
    """Translator output for one task."""

    lines: list[TranslatedLine] = field(default_factory=list)
    source_language: str = "unknown"

    def apply(self, cues: list[SubtitleCue]) -> list[SubtitleCue]:
        """Merge translations by id; cues without a match get placeholders."""

        by_id = {line.cue_id: line for line in self.lines}
        merged: list[SubtitleCue] = []
        for cue in cues:
            match = by_id.get(cue.cue_id)
            merged.append(
                SubtitleCue(
                    cue_id=cue.cue_id,
                    start=cue.start,
                    end=cue.end,
                    original_text=cue.original_text,
                    translated_text=(
                        match.translated_text if match is not None else UNTRANSLATED_PLACEHOLDER
                    ),
                    emotion=match.emotion if match is not None else DEFAULT_EMOTION,
                ),
            )
        return merged


class AudioExtractor(Protocol):
    async def extract(self, source: MediaSource, *, sample_rate: int) -> ExtractedAudio:
        """Decode media into mono PCM WAV at ``sample_rate``."""


class Transcriber(Protocol):
    async def transcribe(self, audio: ExtractedAudio) -> list[SubtitleCue]:
        """Return ordered cues with second-resolution timestamps."""


class Translator(Protocol):
    async def translate(
        self,
        cues: list[SubtitleCue],
        *,
        target_language: str,
    ) -> TranslationBatch:
        """Translate cue texts and tag each with an emotion."""


class VoiceSynthesizer(Protocol):
    async def synthesize(self, text: str, *, voice: str, emotion: str | None) -> bytes | None:
        """Return encoded speech audio, or None when nothing was produced."""


class Muxer(Protocol):
    async def mux(
        self,
        *,
        source: MediaSource,
        subtitles_path: Path,
        clips: list[DubClip],
        output_dir: Path,
    ) -> Path:
        """Combine source media, subtitles and dub clips into an output file."""


@dataclass(slots=True)
class MediaBackends:
    """Backend bundle wired into the stage executor."""

    extractor: AudioExtractor
    transcriber: Transcriber
    translator: Translator
    synthesizer: VoiceSynthesizer
    muxer: Muxer
