"""Logging configuration for the relay.

Centralized Loguru setup: a coloured console sink plus a rotating file
sink. Library modules just import ``logger`` from loguru; the CLI calls
``setup_logging`` once at startup.
"""

import sys
from pathlib import Path

from loguru import logger

LOG_DIR = Path.home() / ".socks5-relay" / "logs"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(debug: bool = False, log_dir: Path | None = LOG_DIR) -> None:
    """Replace the default Loguru handler with console and file sinks.

    Args:
        debug: Log DEBUG to the console instead of INFO
        log_dir: Directory for ``relay.log``, ``None`` to skip the file sink
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level="DEBUG" if debug else "INFO",
        backtrace=True,
        diagnose=debug,
    )

    if log_dir is None:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "relay.log",
        rotation="10 MB",
        retention="1 week",
        compression="zip",
        format=FILE_FORMAT,
        level="DEBUG",
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )


__all__ = ["logger", "LOG_DIR", "setup_logging"]
