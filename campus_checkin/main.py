"""Entrypoint for running the campus check-in API via `python -m campus_checkin.main`."""

from __future__ import annotations

import logging
import os

import uvicorn

from .api import create_app
from .config import load_settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )


def run() -> None:
    env_file = os.getenv("CAMPUS_CHECKIN_ENV")
    settings = load_settings(env_file)
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.log_level,
    )


if __name__ == "__main__":  # pragma: no cover
    run()
