"""Logging configuration helpers for the quiz client."""

from __future__ import annotations

import logging
from logging import Logger
from logging.handlers import RotatingFileHandler

_CONSOLE_FMT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: str | int = logging.INFO, log_file: str | None = None) -> Logger:
    """Configure console (and optional rotating file) logging. Safe to call more than once."""
    global _configured
    logger = logging.getLogger("quiz_client")
    if _configured:
        logger.setLevel(level)
        return logger
    _configured = True

    logging.basicConfig(level=level, format=_CONSOLE_FMT, datefmt="%H:%M:%S")
    logger.setLevel(level)

    if log_file:
        handler = RotatingFileHandler(
            log_file,
            maxBytes=2 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(_CONSOLE_FMT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(logging.WARNING)
    return logger
