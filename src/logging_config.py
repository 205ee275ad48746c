"""Logging configuration using Loguru.

Console output always; in production, rotating relay and error logs.
Caller audio never reaches a log line, and transcripts are truncated.
"""

import sys
from pathlib import Path

from loguru import logger

TRANSCRIPT_LOG_CHARS = 120

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = True,
) -> None:
    """Configure application logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        enable_file: Whether to write rotating log files
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=level == "DEBUG",
    )

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # enqueue: file writes happen off the event loop
        logger.add(
            log_path / "relay_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="100 MB",
            retention="14 days",
            compression="gz",
            enqueue=True,
            diagnose=False,
        )
        logger.add(
            log_path / "relay_errors_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT + "\n{exception}",
            level="ERROR",
            rotation="50 MB",
            retention="60 days",
            compression="gz",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logging initialized at {level} level (files: {enable_file})")


def get_logger(name: str) -> "logger":
    """Get a logger bound to a module name.

    Usage:
        logger = get_logger(__name__)
    """
    return logger.bind(name=name)


def truncate_for_log(text: str, limit: int = TRANSCRIPT_LOG_CHARS) -> str:
    """Shorten caller or assistant text before it reaches a log line."""
    if not text:
        return ""
    text = text.replace("\n", " ")
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."
