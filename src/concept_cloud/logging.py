"""Logging configuration for the Concept Cloud package."""

from __future__ import annotations

import logging
from typing import Optional

_DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client")


def configure_logging(level: int = logging.INFO, handler: Optional[logging.Handler] = None) -> None:
    """Configure root logging with a consistent format.

    aiohttp's access and client loggers stay at WARNING unless ``level``
    is DEBUG.
    """
    logging.basicConfig(level=level, format=_DEFAULT_FORMAT, handlers=[handler] if handler else None)
    noisy_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for the given ``name``."""
    return logging.getLogger(name)
