from __future__ import annotations

import asyncio
import base64
import json

import allure
import httpx
import pytest

from dub_batch.orchestrator.backend import ExtractedAudio, HttpAiBackend
from dub_batch.orchestrator.errors import BackendError, MalformedResponseError
from dub_batch.orchestrator.models import SubtitleCue

pytestmark = [
    allure.epic("Media Pipeline"),
    allure.feature("AI Gateway Client"),
]


def _backend(handler) -> HttpAiBackend:
    return HttpAiBackend(
        base_url="https://gateway.example.com",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )


def _call(backend: HttpAiBackend, coro_factory):
    async def _run():
        async with backend:
            return await coro_factory(backend)

    return asyncio.run(_run())


def _cues() -> list[SubtitleCue]:
    return [
        SubtitleCue(cue_id="1", start=0.0, end=1.0, original_text="Hello"),
        SubtitleCue(cue_id="2", start=1.5, end=2.5, original_text="World"),
    ]


def test_transcribe_posts_audio_and_parses_segments() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "segments": [
                    {
                        "id": 1,
                        "startTime": "00:00:01,000",
                        "endTime": "00:00:02,500",
                        "originalText": " Hi ",
                    },
                    {"startTime": "3.0", "endTime": "4.25", "originalText": "Bye"},
                ],
            },
        )

    audio = ExtractedAudio(wav_bytes=b"RIFFdata", sample_rate=16_000)
    cues = _call(_backend(handler), lambda backend: backend.transcribe(audio))

    body = captured["body"]
    assert captured["path"] == "/v1/transcriptions"
    assert captured["auth"] == "Bearer secret"
    assert body["sampleRate"] == 16_000
    assert base64.b64decode(body["audio"]) == b"RIFFdata"
    assert [(cue.cue_id, cue.start, cue.end, cue.original_text) for cue in cues] == [
        ("1", 1.0, 2.5, "Hi"),
        ("2", 3.0, 4.25, "Bye"),
    ]


def test_transcribe_rejects_segment_without_timestamps() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"segments": [{"id": "1", "originalText": "x"}]})

    audio = ExtractedAudio(wav_bytes=b"RIFF")
    with pytest.raises(MalformedResponseError, match="segment #1"):
        _call(_backend(handler), lambda backend: backend.transcribe(audio))


def test_translate_skips_records_without_id_and_defaults_emotion() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["targetLanguage"] == "Arabic"
        assert [item["id"] for item in body["items"]] == ["1", "2"]
        return httpx.Response(
            200,
            json={
                "sourceLanguage": "en",
                "translations": [
                    {"id": "1", "translatedText": "مرحبا", "emotion": "happy"},
                    {"translatedText": "orphan"},
                    {"id": "2", "translatedText": "عالم"},
                ],
            },
        )

    batch = _call(
        _backend(handler),
        lambda backend: backend.translate(_cues(), target_language="Arabic"),
    )

    assert batch.source_language == "en"
    assert [(line.cue_id, line.emotion) for line in batch.lines] == [
        ("1", "happy"),
        ("2", "calm"),
    ]


def test_translate_without_list_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"translations": "nope"})

    with pytest.raises(MalformedResponseError):
        _call(
            _backend(handler),
            lambda backend: backend.translate(_cues(), target_language="Arabic"),
        )


def test_synthesize_builds_emotion_prompt_and_decodes_audio() -> None:
    prompts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        prompts.append(body["text"])
        assert body["voice"] == "Kore"
        return httpx.Response(200, json={"audio": base64.b64encode(b"PCM").decode()})

    audio = _call(
        _backend(handler),
        lambda backend: backend.synthesize("Hello", voice="Kore", emotion="excited"),
    )
    plain = _call(
        _backend(handler),
        lambda backend: backend.synthesize("Hello", voice="Kore", emotion=None),
    )

    assert audio == b"PCM"
    assert plain == b"PCM"
    assert prompts == ["Say this with a excited tone: Hello", "Say clearly: Hello"]


def test_synthesize_returns_none_when_no_audio() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"audio": None})

    result = _call(
        _backend(handler),
        lambda backend: backend.synthesize("Hi", voice="Kore", emotion="calm"),
    )
    assert result is None


@pytest.mark.parametrize(("status", "transient"), [(429, True), (503, True), (400, False)])
def test_http_errors_carry_retryability(status: int, transient: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="upstream said no")

    with pytest.raises(BackendError, match=f"HTTP {status}") as excinfo:
        _call(
            _backend(handler),
            lambda backend: backend.synthesize("Hi", voice="Kore", emotion=None),
        )
    assert excinfo.value.transient is transient


def test_invalid_json_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(MalformedResponseError, match="invalid JSON"):
        _call(
            _backend(handler),
            lambda backend: backend.synthesize("Hi", voice="Kore", emotion=None),
        )


def test_timeout_maps_to_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(BackendError, match="timed out") as excinfo:
        _call(
            _backend(handler),
            lambda backend: backend.synthesize("Hi", voice="Kore", emotion=None),
        )
    assert excinfo.value.transient is True
