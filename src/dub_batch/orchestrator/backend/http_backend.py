"""HTTP client for a JSON AI gateway serving transcription, translation and TTS."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

import httpx

from dub_batch.orchestrator.backend.base import (
    ExtractedAudio,
    TranslatedLine,
    TranslationBatch,
)
from dub_batch.orchestrator.errors import BackendError, MalformedResponseError
from dub_batch.orchestrator.models import SubtitleCue
from dub_batch.subtitles import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "dub-batch/0.1"
_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpAiBackend:
    """Async client implementing Transcriber, Translator and VoiceSynthesizer.

    Endpoints (relative to ``base_url``):

    - ``POST /v1/transcriptions`` with base64 audio, answers
      ``{"segments": [{"id", "startTime", "endTime", "originalText"}]}``
    - ``POST /v1/translations`` answers
      ``{"sourceLanguage": str, "translations": [{"id", "translatedText", "emotion"}]}``
    - ``POST /v1/speech`` answers ``{"audio": <base64> | null}``
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        transcribe_model: str = "transcribe-default",
        translate_model: str = "translate-default",
        tts_model: str = "tts-default",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": DEFAULT_USER_AGENT}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.transcribe_model = transcribe_model
        self.translate_model = translate_model
        self.tts_model = tts_model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
        )

    async def transcribe(self, audio: ExtractedAudio) -> list[SubtitleCue]:
        payload = await self._post_json(
            "/v1/transcriptions",
            {
                "model": self.transcribe_model,
                "mimeType": audio.mime_type,
                "sampleRate": audio.sample_rate,
                "audio": base64.b64encode(audio.wav_bytes).decode("ascii"),
            },
        )
        segments = payload.get("segments")
        if not isinstance(segments, list):
            raise MalformedResponseError("Transcription response has no segments list")

        cues: list[SubtitleCue] = []
        for index, segment in enumerate(segments, start=1):
            if not isinstance(segment, dict):
                raise MalformedResponseError(f"Transcription segment #{index} is not an object")
            try:
                cues.append(
                    SubtitleCue(
                        cue_id=str(segment.get("id") or index),
                        start=parse_timestamp(str(segment["startTime"])),
                        end=parse_timestamp(str(segment["endTime"])),
                        original_text=str(segment.get("originalText", "")).strip(),
                    ),
                )
            except (KeyError, ValueError) as error:
                raise MalformedResponseError(
                    f"Transcription segment #{index} is invalid: {error}",
                ) from error
        return cues

    async def translate(
        self,
        cues: list[SubtitleCue],
        *,
        target_language: str,
    ) -> TranslationBatch:
        payload = await self._post_json(
            "/v1/translations",
            {
                "model": self.translate_model,
                "targetLanguage": target_language,
                "items": [{"id": cue.cue_id, "originalText": cue.original_text} for cue in cues],
            },
        )
        records = payload.get("translations")
        if not isinstance(records, list):
            raise MalformedResponseError("Translation response has no translations list")

        lines: list[TranslatedLine] = []
        for record in records:
            if not isinstance(record, dict) or record.get("id") is None:
                logger.warning("Ignoring translation record without id: %r", record)
                continue
            text = record.get("translatedText")
            if not isinstance(text, str):
                logger.warning("Ignoring translation record %s without text", record.get("id"))
                continue
            emotion = record.get("emotion")
            lines.append(
                TranslatedLine(
                    cue_id=str(record["id"]),
                    translated_text=text,
                    emotion=emotion if isinstance(emotion, str) and emotion else "calm",
                ),
            )
        source_language = payload.get("sourceLanguage")
        return TranslationBatch(
            lines=lines,
            source_language=source_language if isinstance(source_language, str) else "unknown",
        )

    async def synthesize(self, text: str, *, voice: str, emotion: str | None) -> bytes | None:
        prompt = f"Say this with a {emotion} tone: {text}" if emotion else f"Say clearly: {text}"
        payload = await self._post_json(
            "/v1/speech",
            {"model": self.tts_model, "voice": voice, "text": prompt},
        )
        encoded = payload.get("audio")
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, TypeError) as error:
            raise MalformedResponseError(f"Speech audio is not valid base64: {error}") from error

    async def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=body)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling %s", path)
            raise BackendError(f"{path} request timed out", transient=True) from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling %s: %s", path, error)
            raise BackendError(f"{path} network error: {error}", transient=True) from error

        if not response.is_success:
            detail = response.text[:300].strip()
            raise BackendError(
                f"{path} returned HTTP {response.status_code}: {detail}",
                transient=response.status_code in _TRANSIENT_STATUS_CODES,
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as error:
            raise MalformedResponseError(f"{path} returned invalid JSON: {error}") from error
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"{path} returned {type(payload).__name__}, not object")
        return payload

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpAiBackend:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
