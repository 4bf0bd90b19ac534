"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

_ENV_OVERRIDES = (
    "DUB_BATCH_PARALLEL_LIMIT",
    "DUB_BATCH_MAX_RETRIES",
    "DUB_BATCH_AUTO_RETRY",
    "DUB_BATCH_FAILURE_PROBABILITY",
    "DUB_BATCH_SEED",
    "DUB_BATCH_TARGET_LANGUAGE",
    "DUB_BATCH_LOG_CAPACITY",
)


@pytest.fixture()
def fast_env(monkeypatch, tmp_path: Path) -> Path:
    """Environment for CLI runs: instant simulated stages, output under tmp_path."""

    output_dir = tmp_path / "output"
    monkeypatch.setenv("DUB_BATCH_STAGE_MIN_SECONDS", "0")
    monkeypatch.setenv("DUB_BATCH_STAGE_MAX_SECONDS", "0")
    monkeypatch.setenv("DUB_BATCH_OUTPUT_DIR", str(output_dir))
    monkeypatch.setenv("DUB_BATCH_SIMULATE", "1")
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    return output_dir
