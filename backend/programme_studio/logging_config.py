"""Logging configuration for the programme studio backend."""

from __future__ import annotations

import logging

from .config import LOG_LEVEL


def setup_logging(name: str) -> logging.Logger:
    """Configure the root logger and return a logger for ``name``.

    Safe to call more than once; handlers are only installed the first time.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return logging.getLogger(name)
