"""Timer-driven stand-in backend for demos and tests."""

from __future__ import annotations

import asyncio
import io
import random
import wave
from pathlib import Path

from dub_batch.orchestrator.backend.base import (
    ExtractedAudio,
    MediaBackends,
    MediaSource,
    TranslatedLine,
    TranslationBatch,
)
from dub_batch.orchestrator.models import DubClip, SubtitleCue

_DEMO_LINES: tuple[tuple[float, float, str], ...] = (
    (0.0, 5.0, "System initializing. Protocols engaged."),
    (6.0, 12.0, "We are processing the neural dubbing layer now."),
    (15.0, 22.0, "Frame seeking and variable speed are active."),
)


def silent_wav(*, seconds: float = 0.1, sample_rate: int = 16_000) -> bytes:
    """Encode a short mono 16-bit silent WAV."""

    frames = int(seconds * sample_rate)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate)
        handle.writeframes(b"\x00\x00" * frames)
    return buffer.getvalue()


class SimulatedBackend:
    """Implements every stage backend with randomized sleeps."""

    def __init__(
        self,
        *,
        min_latency_seconds: float = 0.5,
        max_latency_seconds: float = 2.0,
        rng: random.Random | None = None,
        emotion: str = "confident",
        source_language: str = "en",
    ) -> None:
        if min_latency_seconds < 0 or max_latency_seconds < min_latency_seconds:
            raise ValueError("Simulated latency range must satisfy 0 <= min <= max.")
        self._min_latency = min_latency_seconds
        self._max_latency = max_latency_seconds
        self._rng = rng or random.Random()  # noqa: S311
        self._emotion = emotion
        self._source_language = source_language

    def backends(self) -> MediaBackends:
        return MediaBackends(
            extractor=self,
            transcriber=self,
            translator=self,
            synthesizer=self,
            muxer=self,
        )

    async def _pause(self) -> None:
        await asyncio.sleep(self._rng.uniform(self._min_latency, self._max_latency))

    async def extract(self, source: MediaSource, *, sample_rate: int) -> ExtractedAudio:
        await self._pause()
        return ExtractedAudio(
            wav_bytes=silent_wav(sample_rate=sample_rate),
            sample_rate=sample_rate,
        )

    async def transcribe(self, audio: ExtractedAudio) -> list[SubtitleCue]:
        await self._pause()
        return [
            SubtitleCue(cue_id=str(index), start=start, end=end, original_text=text)
            for index, (start, end, text) in enumerate(_DEMO_LINES, start=1)
        ]

    async def translate(
        self,
        cues: list[SubtitleCue],
        *,
        target_language: str,
    ) -> TranslationBatch:
        await self._pause()
        return TranslationBatch(
            lines=[
                TranslatedLine(
                    cue_id=cue.cue_id,
                    translated_text=f"[{target_language}] {cue.original_text}",
                    emotion=self._emotion,
                )
                for cue in cues
            ],
            source_language=self._source_language,
        )

    async def synthesize(self, text: str, *, voice: str, emotion: str | None) -> bytes | None:
        await self._pause()
        if not text.strip():
            return None
        return silent_wav()

    async def mux(
        self,
        *,
        source: MediaSource,
        subtitles_path: Path,
        clips: list[DubClip],
        output_dir: Path,
    ) -> Path:
        await self._pause()
        return output_dir / f"{Path(source.name).stem}.dubbed.mkv"
