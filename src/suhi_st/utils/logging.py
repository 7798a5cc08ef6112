"""
Logging Configuration

Standard logging setup for the suhi_st pipeline.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

NAMESPACE = "suhi_st"
DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: Optional[str] = "./logs",
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Configure logging for the pipeline.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file name (auto-generated if None)
        log_dir: Directory for log files; None disables the file handler
        format_string: Custom format string

    Returns:
        Package logger
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT

    logger = logging.getLogger(NAMESPACE)
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        if log_file is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = f"suhi_st_{timestamp}.log"

        file_handler = logging.FileHandler(log_path / log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_handler.setFormatter(logging.Formatter(format_string))
        logger.addHandler(file_handler)
        logger.debug(f"Log file: {log_path / log_file}")

    logger.debug(f"Logging initialized at level {level}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the package namespace.

    Args:
        name: Logger name (prefixed with 'suhi_st.' when missing)
    """
    if not name.startswith(NAMESPACE):
        name = f"{NAMESPACE}.{name}"
    return logging.getLogger(name)
