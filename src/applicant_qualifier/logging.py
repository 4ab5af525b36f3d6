"""Logging configuration for applicant-qualifier.

The package logger is named after the import package, so every module
logger created with ``logging.getLogger(__name__)`` propagates into the
handlers installed here.  Modules that prefer a single shared instance
import ``logger`` directly.

Two sinks:

- **stderr** — installed at import time, INFO by default; raise it to
  DEBUG with :func:`set_console_level` (the CLI's ``--verbose``).
- **file** — opt-in via :func:`configure_file_logging`, one timestamped
  file per run so a batch and its credit movements can be audited later.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

PACKAGE_LOGGER = "applicant_qualifier"
LOG_FILE_PREFIX = "applicant-qualifier"
DEFAULT_LOG_DIR = "data/logs"

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(PACKAGE_LOGGER)
logger.setLevel(logging.INFO)

console_handler = logging.StreamHandler(sys.stderr)
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
logger.addHandler(console_handler)


def set_console_level(level: int) -> None:
    """Change what reaches stderr without touching any file handler."""
    console_handler.setLevel(level)
    if level < logger.level:
        logger.setLevel(level)


def configure_file_logging(
    log_dir: str | Path = DEFAULT_LOG_DIR,
    *,
    level: int = logging.INFO,
) -> logging.FileHandler:
    """Add a file handler writing ``applicant-qualifier_<timestamp>.log``.

    Creates ``log_dir`` if needed.  Returns the handler so callers (or
    tests) can remove it again.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    filename = log_path / f"{LOG_FILE_PREFIX}_{timestamp}.log"

    file_handler = logging.FileHandler(filename, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))

    if level < logger.level:
        logger.setLevel(level)

    logger.addHandler(file_handler)
    logger.info("Writing run log to %s", filename)
    return file_handler


__all__ = ["configure_file_logging", "logger", "set_console_level"]
