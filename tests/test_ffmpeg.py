from __future__ import annotations

import asyncio
import io
import wave
from pathlib import Path

import allure
import pytest

from dub_batch.orchestrator.backend import FfmpegMedia, MediaSource
from dub_batch.orchestrator.backend import ffmpeg as ffmpeg_module
from dub_batch.orchestrator.backend.simulated import silent_wav
from dub_batch.orchestrator.errors import BackendError
from dub_batch.orchestrator.models import DubClip

pytestmark = [
    allure.epic("Media Pipeline"),
    allure.feature("ffmpeg"),
]


class _FakeProcess:
    def __init__(self, *, returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> None:
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr

    async def communicate(self, stdin_data: bytes | None = None) -> tuple[bytes, bytes]:
        return self._stdout, self._stderr


def _patch_exec(monkeypatch, process: _FakeProcess) -> list[tuple[str, ...]]:
    calls: list[tuple[str, ...]] = []

    async def _fake_exec(*args, **kwargs):
        calls.append(args)
        return process

    monkeypatch.setattr(ffmpeg_module.asyncio, "create_subprocess_exec", _fake_exec)
    return calls


def test_extract_requests_mono_pcm_at_sample_rate(monkeypatch, tmp_path: Path) -> None:
    calls = _patch_exec(monkeypatch, _FakeProcess(returncode=0, stdout=b"RIFF...."))
    media = FfmpegMedia(binary="ffmpeg-test")

    audio = asyncio.run(
        media.extract(MediaSource(name="a.mp4", path=tmp_path / "a.mp4"), sample_rate=16_000),
    )

    assert audio.wav_bytes == b"RIFF...."
    assert audio.sample_rate == 16_000
    args = calls[0]
    assert args[0] == "ffmpeg-test"
    assert args[args.index("-ac") + 1] == "1"
    assert args[args.index("-ar") + 1] == "16000"
    assert args[args.index("-acodec") + 1] == "pcm_s16le"


def test_nonzero_exit_becomes_non_transient_backend_error(monkeypatch, tmp_path: Path) -> None:
    _patch_exec(
        monkeypatch,
        _FakeProcess(returncode=1, stderr=b"a.mp4: Invalid data found when processing input"),
    )
    media = FfmpegMedia()

    with pytest.raises(BackendError, match="Invalid data found") as excinfo:
        asyncio.run(
            media.extract(MediaSource(name="a.mp4", path=tmp_path / "a.mp4"), sample_rate=16_000),
        )
    assert excinfo.value.transient is False


def test_missing_binary_is_reported(tmp_path: Path) -> None:
    media = FfmpegMedia(binary="dub-batch-no-such-ffmpeg-binary")

    with pytest.raises(BackendError, match="ffmpeg not found"):
        asyncio.run(
            media.extract(MediaSource(name="a.mp4", path=tmp_path / "a.mp4"), sample_rate=16_000),
        )


def test_extract_without_payload_fails_fast() -> None:
    with pytest.raises(BackendError, match="No media payload"):
        asyncio.run(FfmpegMedia().extract(MediaSource(name="a.mp4"), sample_rate=16_000))


def test_mux_writes_clips_and_mixes_dub_track(monkeypatch, tmp_path: Path) -> None:
    calls = _patch_exec(monkeypatch, _FakeProcess(returncode=0))
    source = tmp_path / "movie.mp4"
    subtitles = tmp_path / "movie.srt"
    clips = [
        DubClip(cue_id="1", start=0.5, audio=b"one", voice="Kore"),
        DubClip(cue_id="2", start=2.0, audio=b"two", voice="Kore"),
    ]

    output = asyncio.run(
        FfmpegMedia().mux(
            source=MediaSource(name="movie.mp4", path=source),
            subtitles_path=subtitles,
            clips=clips,
            output_dir=tmp_path / "out",
        ),
    )

    assert output == tmp_path / "out" / "movie.dubbed.mkv"
    assert (tmp_path / "out" / "movie_clips" / "cue_0002.wav").read_bytes() == b"two"
    args = calls[0]
    graph = args[args.index("-filter_complex") + 1]
    assert "[2:a]adelay=500:all=1[d0]" in graph
    assert "[3:a]adelay=2000:all=1[d1]" in graph
    assert "amix=inputs=2" in graph
    assert args[-1] == str(output)


def test_mux_names_clip_files_by_position_not_cue_id(monkeypatch, tmp_path: Path) -> None:
    calls = _patch_exec(monkeypatch, _FakeProcess(returncode=0))
    out_dir = tmp_path / "out"
    clips = [
        DubClip(cue_id="7", start=0.0, audio=b"first", voice="Kore"),
        DubClip(cue_id="7", start=1.0, audio=b"second", voice="Kore"),
        DubClip(cue_id="../evil", start=2.0, audio=b"third", voice="Kore"),
    ]

    asyncio.run(
        FfmpegMedia().mux(
            source=MediaSource(name="movie.mp4", path=tmp_path / "movie.mp4"),
            subtitles_path=tmp_path / "movie.srt",
            clips=clips,
            output_dir=out_dir,
        ),
    )

    clips_dir = out_dir / "movie_clips"
    written = sorted(path.name for path in clips_dir.iterdir())
    assert written == ["cue_0001.wav", "cue_0002.wav", "cue_0003.wav"]
    assert (clips_dir / "cue_0001.wav").read_bytes() == b"first"
    assert (clips_dir / "cue_0002.wav").read_bytes() == b"second"
    assert not (out_dir / "evil.wav").exists()
    args = calls[0]
    inputs = [args[n + 1] for n, arg in enumerate(args) if arg == "-i"][2:]
    assert len(set(inputs)) == 3
    assert all(Path(path).parent == clips_dir for path in inputs)


def test_mux_without_clips_copies_streams(monkeypatch, tmp_path: Path) -> None:
    calls = _patch_exec(monkeypatch, _FakeProcess(returncode=0))

    asyncio.run(
        FfmpegMedia().mux(
            source=MediaSource(name="movie.mp4", path=tmp_path / "movie.mp4"),
            subtitles_path=tmp_path / "movie.srt",
            clips=[],
            output_dir=tmp_path,
        ),
    )

    assert "-filter_complex" not in calls[0]
    assert "copy" in calls[0]


def test_silent_wav_is_valid_mono_pcm() -> None:
    with wave.open(io.BytesIO(silent_wav(seconds=0.5, sample_rate=8000)), "rb") as handle:
        assert handle.getnchannels() == 1
        assert handle.getsampwidth() == 2
        assert handle.getframerate() == 8000
        assert handle.getnframes() == 4000
