"""ffmpeg-backed audio extraction and muxing."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from dub_batch.orchestrator.backend.base import ExtractedAudio, MediaSource
from dub_batch.orchestrator.errors import BackendError
from dub_batch.orchestrator.models import DubClip

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 600


class FfmpegMedia:
    """Runs ffmpeg as an asyncio subprocess."""

    def __init__(self, *, binary: str = "ffmpeg", timeout_seconds: float = 900.0) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    async def extract(self, source: MediaSource, *, sample_rate: int) -> ExtractedAudio:
        """Decode the first audio stream into mono PCM WAV."""

        if source.path is None and source.data is None:
            raise BackendError(f"No media payload for {source.name}", transient=False)
        input_arg = str(source.path) if source.path is not None else "pipe:0"
        args = [
            "-y",
            "-i",
            input_arg,
            "-vn",
            "-ac",
            "1",
            "-ar",
            str(sample_rate),
            "-acodec",
            "pcm_s16le",
            "-f",
            "wav",
            "pipe:1",
        ]
        stdout = await self._run(args, stdin_data=source.data if source.path is None else None)
        if not stdout:
            raise BackendError(f"ffmpeg produced no audio for {source.name}", transient=False)
        return ExtractedAudio(wav_bytes=stdout, sample_rate=sample_rate)

    async def mux(
        self,
        *,
        source: MediaSource,
        subtitles_path: Path,
        clips: list[DubClip],
        output_dir: Path,
    ) -> Path:
        """Remux source video with the subtitle track and a dub track."""

        if source.path is None:
            raise BackendError(f"Muxing needs a file path for {source.name}", transient=False)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{source.path.stem}.dubbed.mkv"

        clip_paths = _write_clips(clips, output_dir / f"{source.path.stem}_clips")
        args = ["-y", "-i", str(source.path), "-i", str(subtitles_path)]
        for clip_path in clip_paths:
            args.extend(["-i", str(clip_path)])

        if clip_paths:
            delays = [
                f"[{index + 2}:a]adelay={int(clip.start * 1000)}:all=1[d{index}]"
                for index, clip in enumerate(clips)
            ]
            mix_inputs = "".join(f"[d{index}]" for index in range(len(clip_paths)))
            graph = ";".join(
                [*delays, f"{mix_inputs}amix=inputs={len(clip_paths)}:normalize=0[dub]"],
            )
            args.extend(
                [
                    "-filter_complex",
                    graph,
                    "-map",
                    "0:v",
                    "-map",
                    "0:a?",
                    "-map",
                    "[dub]",
                    "-map",
                    "1",
                    "-c:v",
                    "copy",
                    "-c:a",
                    "aac",
                ],
            )
        else:
            args.extend(["-map", "0:v", "-map", "0:a?", "-map", "1", "-c", "copy"])
        args.extend(["-c:s", "srt", str(output_path)])

        await self._run(args)
        return output_path

    async def _run(self, args: list[str], *, stdin_data: bytes | None = None) -> bytes:
        logger.debug("Running %s %s", self.binary, " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin_data is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise BackendError(f"ffmpeg not found: {self.binary}", transient=False) from error

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_data),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL_CHARS:].strip()
            raise BackendError(
                f"ffmpeg exited with code {process.returncode}: {tail}",
                transient=False,
            )
        return stdout


def _write_clips(clips: list[DubClip], clips_dir: Path) -> list[Path]:
    if not clips:
        return []
    clips_dir.mkdir(parents=True, exist_ok=True)
    # cue ids come from the transcriber, so files are named by position
    paths: list[Path] = []
    for index, clip in enumerate(clips, start=1):
        path = clips_dir / f"cue_{index:04d}.wav"
        path.write_bytes(clip.audio)
        paths.append(path)
    return paths
