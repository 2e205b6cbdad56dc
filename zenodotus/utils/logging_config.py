"""Centralized logging configuration for Zenodotus."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> logging.Logger:
    """
    Configure logging for the command line.

    Console records go to stderr so stdout stays reserved for command output.
    A rotating file handler is added only when log_file is given; the vault
    itself never creates log files. Only configures if not already configured
    to avoid duplicate handlers.

    Args:
        level: Log level name for every handler (default: "INFO")
        log_file: Optional path of a rotating log file

    Returns:
        Logger instance for the calling module
    """
    root_logger = logging.getLogger()

    # Only configure if not already configured (avoid duplicate handlers)
    if root_logger.handlers:
        return logging.getLogger(__name__)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # Keeps at most 4 previous files of 10MB each
        file_handler = RotatingFileHandler(
            log_file,
            mode="a",
            maxBytes=10 * 1024 * 1024,
            backupCount=4,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)

    return logging.getLogger(__name__)
