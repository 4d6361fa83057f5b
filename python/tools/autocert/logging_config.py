#!/usr/bin/env python3
"""
Logging configuration for AutoCert.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FILE_NAME = "autocert.log"
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Set up logging configuration using loguru.

    Args:
        log_level: The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for ``autocert.log``; no file sink when None

    Returns:
        Path of the log file, or None when only stderr is used
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=log_level,
        colorize=True,
    )

    if log_dir is None:
        return None

    log_file = Path(log_dir) / LOG_FILE_NAME
    try:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="1 week",
            level=log_level,
            format=FILE_FORMAT,
        )
    except OSError as e:
        logger.warning(f"Cannot write log file {log_file}: {e}; logging to stderr only")
        return None

    logger.debug(f"Logging to {log_file}")
    return log_file
