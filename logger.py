"""Logging configuration for the Planner reminders service."""

import logging
import sys
from datetime import datetime
from pathlib import Path

from config import LOG_DIR, LOG_LEVEL


def setup_logging(log_dir: Path = LOG_DIR, level: str = LOG_LEVEL) -> logging.Logger:
    """Set up the `planner` logger with a dated file and, on a terminal, the console.

    Calling it again replaces (and closes) the handlers of the previous call.
    """
    logger = logging.getLogger("planner")
    logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # One file per day: planner-YYYY-MM-DD.log
    log_file = Path(log_dir) / f"planner-{datetime.now().strftime('%Y-%m-%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(file_handler)

    if sys.stdout is not None and sys.stdout.isatty():
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(message)s",
            datefmt="%H:%M:%S"
        ))
        logger.addHandler(console_handler)

    return logger


# Global logger instance
logger = setup_logging()
