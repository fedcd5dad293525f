"""Logging configuration for the proxy.

Library modules only log through loguru's ``logger``; sinks are installed
here, by the command line, so that embedding applications keep control of
their own logging.
"""

import sys
from pathlib import Path

from loguru import logger

# Logs directory in the user's home directory
LOG_DIR = Path.home() / ".socks-relay" / "logs"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(*, debug: bool = False, log_file: bool = True) -> None:
    """Install the console sink and, optionally, the rotating file sink.

    Args:
        debug: Log DEBUG messages to the console as well
        log_file: Also write DEBUG logs to ``LOG_DIR/proxy.log``
    """
    logger.remove()  # Remove default handler

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level="DEBUG" if debug else "INFO",
        backtrace=True,
        diagnose=debug,
    )

    if log_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        logger.add(
            LOG_DIR / "proxy.log",
            rotation="10 MB",
            retention="1 week",
            compression="zip",
            format=FILE_FORMAT,
            level="DEBUG",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )


__all__ = ["LOG_DIR", "configure_logging", "logger"]
