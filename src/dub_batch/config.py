"""Runtime configuration for the batch orchestrator and its backends."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from dub_batch.orchestrator.event_log import DEFAULT_LOG_CAPACITY
from dub_batch.orchestrator.models import ALLOWED_PARALLEL_LIMITS, ConcurrencyConfig

DEFAULT_OUTPUT_DIR = Path(".dub_batch/output")


@dataclass(slots=True)
class BatchSettings:
    """Scheduler and retry settings."""

    parallel_limit: int = 2
    max_retries: int = 0
    auto_retry: bool = False
    log_capacity: int = DEFAULT_LOG_CAPACITY

    def concurrency(self) -> ConcurrencyConfig:
        return ConcurrencyConfig(
            parallel_limit=self.parallel_limit,
            max_retries=self.max_retries,
            auto_retry=self.auto_retry,
        )


@dataclass(slots=True)
class SimulationSettings:
    """Timer-driven backend used when no AI gateway is configured."""

    enabled: bool = True
    failure_probability: float = 0.0
    stage_min_seconds: float = 0.5
    stage_max_seconds: float = 2.0
    seed: int | None = None


@dataclass(slots=True)
class BackendSettings:
    """AI gateway connection settings."""

    api_url: str = ""
    api_key: str | None = None
    transcribe_model: str = "transcribe-default"
    translate_model: str = "translate-default"
    tts_model: str = "tts-default"
    request_timeout_seconds: float = 120.0
    max_http_retries: int = 3


@dataclass(slots=True)
class DubbingSettings:
    """Language, voice and output settings."""

    target_language: str = "Arabic"
    voice: str = "Kore"
    sample_rate: int = 16_000
    output_dir: Path = DEFAULT_OUTPUT_DIR
    ffmpeg_binary: str = "ffmpeg"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    batch: BatchSettings = field(default_factory=BatchSettings)
    simulation: SimulationSettings = field(default_factory=SimulationSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    dubbing: DubbingSettings = field(default_factory=DubbingSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local runs."""

        seed_raw = os.getenv("DUB_BATCH_SEED", "").strip()
        return cls(
            batch=BatchSettings(
                parallel_limit=_env_int("DUB_BATCH_PARALLEL_LIMIT", 2),
                max_retries=_env_int("DUB_BATCH_MAX_RETRIES", 0),
                auto_retry=_env_bool("DUB_BATCH_AUTO_RETRY", default=False),
                log_capacity=_env_int("DUB_BATCH_LOG_CAPACITY", DEFAULT_LOG_CAPACITY),
            ),
            simulation=SimulationSettings(
                enabled=_env_bool("DUB_BATCH_SIMULATE", default=True),
                failure_probability=_env_float("DUB_BATCH_FAILURE_PROBABILITY", 0.0),
                stage_min_seconds=_env_float("DUB_BATCH_STAGE_MIN_SECONDS", 0.5),
                stage_max_seconds=_env_float("DUB_BATCH_STAGE_MAX_SECONDS", 2.0),
                seed=int(seed_raw) if seed_raw else None,
            ),
            backend=BackendSettings(
                api_url=os.getenv("DUB_BATCH_API_URL", "").strip(),
                api_key=os.getenv("DUB_BATCH_API_KEY") or None,
                transcribe_model=os.getenv("DUB_BATCH_TRANSCRIBE_MODEL", "transcribe-default"),
                translate_model=os.getenv("DUB_BATCH_TRANSLATE_MODEL", "translate-default"),
                tts_model=os.getenv("DUB_BATCH_TTS_MODEL", "tts-default"),
                request_timeout_seconds=_env_float("DUB_BATCH_REQUEST_TIMEOUT_SECONDS", 120.0),
                max_http_retries=_env_int("DUB_BATCH_MAX_HTTP_RETRIES", 3),
            ),
            dubbing=DubbingSettings(
                target_language=os.getenv("DUB_BATCH_TARGET_LANGUAGE", "Arabic"),
                voice=os.getenv("DUB_BATCH_VOICE", "Kore"),
                sample_rate=_env_int("DUB_BATCH_SAMPLE_RATE", 16_000),
                output_dir=Path(os.getenv("DUB_BATCH_OUTPUT_DIR", str(DEFAULT_OUTPUT_DIR))),
                ffmpeg_binary=os.getenv("DUB_BATCH_FFMPEG", "ffmpeg"),
            ),
            log_level=os.getenv("DUB_BATCH_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if self.batch.parallel_limit not in ALLOWED_PARALLEL_LIMITS:
            raise ValueError(
                f"DUB_BATCH_PARALLEL_LIMIT must be one of {ALLOWED_PARALLEL_LIMITS}, "
                f"got {self.batch.parallel_limit!r}.",
            )
        if self.batch.max_retries < 0:
            raise ValueError("DUB_BATCH_MAX_RETRIES must be >= 0.")
        if self.batch.log_capacity <= 0:
            raise ValueError("DUB_BATCH_LOG_CAPACITY must be > 0.")
        if not 0.0 <= self.simulation.failure_probability <= 1.0:
            raise ValueError("DUB_BATCH_FAILURE_PROBABILITY must be between 0 and 1.")
        if self.simulation.stage_min_seconds < 0:
            raise ValueError("DUB_BATCH_STAGE_MIN_SECONDS must be >= 0.")
        if self.simulation.stage_max_seconds < self.simulation.stage_min_seconds:
            raise ValueError(
                "DUB_BATCH_STAGE_MAX_SECONDS must be >= DUB_BATCH_STAGE_MIN_SECONDS.",
            )
        if self.dubbing.sample_rate <= 0:
            raise ValueError("DUB_BATCH_SAMPLE_RATE must be > 0.")
        if not self.simulation.enabled:
            _validate_api_url(self.backend.api_url)
        if self.backend.request_timeout_seconds <= 0:
            raise ValueError("DUB_BATCH_REQUEST_TIMEOUT_SECONDS must be > 0.")


def _validate_api_url(value: str) -> None:
    if not value:
        raise ValueError("DUB_BATCH_API_URL is required when simulation is disabled.")
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid DUB_BATCH_API_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
