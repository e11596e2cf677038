"""Logging configuration for hosts embedding the guidance pipeline."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from moleguide.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | int = "INFO", log_dir: str | None = None) -> None:
    """Configure logging to the console and, if a directory is given, a file."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / "moleguide.log"))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def setup_logging_from_config(config: LoggingConfig) -> None:
    setup_logging(config.level, config.log_dir)
