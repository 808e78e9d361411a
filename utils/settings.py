"""Environment-driven configuration for the dataset generator.

Values are read from the process environment (optionally populated from a
`.env` file by `python-dotenv`) into an `AppSettings` dataclass. Numeric
values that fail to parse fall back to their defaults with a warning.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

LOGGER = logging.getLogger(__name__)

FAILURE_POLICIES = ("abort", "fallback")


@dataclass
class AppSettings:
    """Runtime configuration shared by the API layer and services."""

    openai_api_key: Optional[str]
    openai_base_url: Optional[str] = None
    default_model: str = "gpt-4o-mini"
    openai_timeout: float = 45.0
    analysis_temperature: float = 0.2
    analysis_seed: int = 42
    analysis_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    failure_policy: str = "abort"
    dataset_dir: Path = Path("uploads") / "datasets"
    work_dir: Optional[Path] = None
    max_batch_images: int = 100
    batch_ttl_seconds: float = 3600.0
    max_finished_batches: int = 50
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create the dataset and work directories, raising on bad paths."""
        for directory in (self.dataset_dir, self.work_dir):
            if directory is None:
                continue
            if directory.exists() and not directory.is_dir():
                raise RuntimeError(
                    f"{directory} points to a file, not a directory. "
                    "Set DATASET_DIR / WORK_DIR to a directory path."
                )
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except Exception as exc:
                raise RuntimeError(f"Failed to create or access directory at {directory}") from exc


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid %s=%r, using default %s", name, value, default)
        return default


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid %s=%r, using default %s", name, value, default)
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Build `AppSettings` from `env` (defaults to `os.environ`)."""
    env = os.environ if env is None else env

    failure_policy = (env.get("BATCH_FAILURE_POLICY") or "abort").strip().lower()
    if failure_policy not in FAILURE_POLICIES:
        LOGGER.warning("Unknown BATCH_FAILURE_POLICY=%r, using 'abort'", failure_policy)
        failure_policy = "abort"

    work_dir = env.get("WORK_DIR")

    return AppSettings(
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_base_url=env.get("OPENAI_BASE_URL") or None,
        default_model=env.get("OPENAI_MODEL") or "gpt-4o-mini",
        openai_timeout=_float_env(env, "OPENAI_TIMEOUT", 45.0),
        analysis_temperature=_float_env(env, "ANALYSIS_TEMPERATURE", 0.2),
        analysis_seed=_int_env(env, "ANALYSIS_SEED", 42),
        analysis_max_attempts=max(1, _int_env(env, "ANALYSIS_MAX_ATTEMPTS", 3)),
        retry_base_delay=_float_env(env, "RETRY_BASE_DELAY", 1.0),
        retry_max_delay=_float_env(env, "RETRY_MAX_DELAY", 8.0),
        failure_policy=failure_policy,
        dataset_dir=Path(env.get("DATASET_DIR") or Path("uploads") / "datasets").expanduser(),
        work_dir=Path(work_dir).expanduser() if work_dir else None,
        max_batch_images=_int_env(env, "MAX_BATCH_IMAGES", 100),
        batch_ttl_seconds=_float_env(env, "BATCH_TTL_SECONDS", 3600.0),
        max_finished_batches=max(0, _int_env(env, "MAX_FINISHED_BATCHES", 50)),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )
