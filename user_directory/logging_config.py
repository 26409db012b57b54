"""Logging configuration for the directory service."""

from __future__ import annotations

import logging.config
from typing import Any

from .config import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure root and library loggers from settings."""
    settings = settings or get_settings()
    level = settings.log_level.upper()

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": settings.log_format if settings.log_format in ("text", "json") else "text",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        "loggers": {
            "uvicorn": {"level": level},
            "psycopg": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "user_directory": {"level": level},
        },
    }

    logging.config.dictConfig(config)
