"""Logging setup: loguru sinks, with paramiko's stdlib records routed into them."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

LOG_FILE_NAME = "romhost.log"
LOG_LEVEL_ENV = "ROMHOST_LOG_LEVEL"


class _ToLoguru(logging.Handler):
    """Forward stdlib ``logging`` records (paramiko uses it) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).log(level, f"[{record.name}] {record.getMessage()}")


def setup_logger(log_dir: Path | None = None, level: str | None = None) -> None:
    """
    Configure loguru with console + rotating file output.

    The console level comes from *level*, then ``ROMHOST_LOG_LEVEL``, then
    INFO.  The file always records DEBUG.  paramiko's own logger is
    forwarded at WARNING, or at DEBUG when the console is at DEBUG, so
    transport trouble lands in the same place as our messages.
    """
    console_level = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logger.remove()

    # Console
    logger.add(
        sys.stderr,
        level=console_level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:<7}</level> | {message}",
        colorize=True,
    )

    # File
    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_dir / LOG_FILE_NAME),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<7} | {name}:{line} | {message}",
            rotation="5 MB",
            retention="7 days",
            encoding="utf-8",
        )

    ssh_log = logging.getLogger("paramiko")
    ssh_log.handlers = [_ToLoguru()]
    ssh_log.setLevel(logging.DEBUG if console_level == "DEBUG" else logging.WARNING)
    ssh_log.propagate = False
