"""Logging configuration using loguru.

The agent SDK, asyncio and anyio log through the standard library; their
records are forwarded into loguru so a chat session has a single log stream.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

_NOISY_LOGGERS = ("asyncio", "anyio", "claude_agent_sdk")


def _stdlib_caller_depth() -> int:
    """Frames between the forwarding handler and the code that logged."""
    frame, depth = logging.currentframe(), 2
    while frame is not None and frame.f_code.co_filename == logging.__file__:
        frame, depth = frame.f_back, depth + 1
    return depth


class _ForwardToLoguru(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        level: str | int = record.levelno
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            pass
        logger.opt(depth=_stdlib_caller_depth(), exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, log_file: str | Path | None = None) -> None:
    """Make loguru the only sink.

    With ``log_file`` set, records go to that file (rotated at 10 MB) instead
    of stderr, which keeps an interactive terminal free for conversation
    output.
    """
    level = level.upper()

    logger.remove()
    if log_file is None:
        logger.add(sys.stderr, level=level, format=_FORMAT)
    else:
        logger.add(str(log_file), level=level, format=_FORMAT, rotation="10 MB", enqueue=True)

    logging.basicConfig(handlers=[_ForwardToLoguru()], level=0, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging initialised (level={}, file={})", level, log_file)
