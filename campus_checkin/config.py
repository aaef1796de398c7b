"""Configuration helpers for the campus check-in service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .retry import RetryConfig

STORE_BACKENDS = ("sqlite", "http")


@dataclass(slots=True)
class Settings:
    """Runtime configuration values loaded from environment variables."""

    api_key: str
    store_backend: str = "sqlite"
    database_path: Path = Path("campus_checkin.db")
    store_base_url: Optional[str] = None
    store_token: Optional[str] = None
    retry: RetryConfig = RetryConfig()
    connectivity_check_url: Optional[str] = None
    connectivity_interval_seconds: float = 30.0
    log_level: str = "info"


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, optionally from a specific file."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    api_key = os.getenv("API_KEY")
    if not api_key:
        raise RuntimeError("API_KEY must be configured")

    backend = os.getenv("STORE_BACKEND", "sqlite").lower()
    if backend not in STORE_BACKENDS:
        raise RuntimeError(f"STORE_BACKEND must be one of: {', '.join(STORE_BACKENDS)}")

    base_url = os.getenv("STORE_BASE_URL")
    if backend == "http" and not base_url:
        raise RuntimeError("STORE_BASE_URL must be configured when STORE_BACKEND=http")

    retry = RetryConfig(
        max_retries=int(os.getenv("RETRY_MAX_RETRIES", "3")),
        initial_delay_ms=float(os.getenv("RETRY_INITIAL_DELAY_MS", "1000")),
        max_delay_ms=float(os.getenv("RETRY_MAX_DELAY_MS", "10000")),
        multiplier=float(os.getenv("RETRY_MULTIPLIER", "2")),
    )

    return Settings(
        api_key=api_key,
        store_backend=backend,
        database_path=Path(os.getenv("DATABASE_PATH", "campus_checkin.db")).expanduser(),
        store_base_url=base_url,
        store_token=os.getenv("STORE_TOKEN"),
        retry=retry,
        connectivity_check_url=os.getenv("CONNECTIVITY_CHECK_URL"),
        connectivity_interval_seconds=float(os.getenv("CONNECTIVITY_INTERVAL_SECONDS", "30")),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )


__all__ = ["Settings", "load_settings", "STORE_BACKENDS"]
