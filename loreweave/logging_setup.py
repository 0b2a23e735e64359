"""Logging setup: loguru sinks for the CLI."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level} {name}: {message}"


def setup_logging(level: str = "WARNING", log_file: str | Path | None = None) -> None:
    """Replace loguru's default sink with a stderr sink and an optional file sink.

    Call this once, before the first log call.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=_FORMAT)
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(path), level="DEBUG", format=_FORMAT, rotation="5 MB", encoding="utf-8")
