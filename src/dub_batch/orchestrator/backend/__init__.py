"""Stage backend implementations."""

from dub_batch.orchestrator.backend.base import (
    AudioExtractor,
    ExtractedAudio,
    MediaBackends,
    MediaSource,
    Muxer,
    Transcriber,
    TranslatedLine,
    TranslationBatch,
    Translator,
    VoiceSynthesizer,
)
from dub_batch.orchestrator.backend.ffmpeg import FfmpegMedia
from dub_batch.orchestrator.backend.http_backend import HttpAiBackend
from dub_batch.orchestrator.backend.simulated import SimulatedBackend

__all__ = [
    "AudioExtractor",
    "ExtractedAudio",
    "FfmpegMedia",
    "HttpAiBackend",
    "MediaBackends",
    "MediaSource",
    "Muxer",
    "SimulatedBackend",
    "Transcriber",
    "TranslatedLine",
    "TranslationBatch",
    "Translator",
    "VoiceSynthesizer",
]
