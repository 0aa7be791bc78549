"""Logging utilities for RootGuard."""

import logging
import os
import sys


def setup_logging(log_level: str | None = None, log_file: str | None = None) -> None:
    """
    Setup logging with configurable level.

    Priority: argument > ROOTGUARD_LOG_LEVEL env var > default (WARNING)
    The log file (argument > ROOTGUARD_LOG_FILE) always records DEBUG.
    """
    if log_level is None:
        log_level = os.environ.get("ROOTGUARD_LOG_LEVEL", "WARNING")
    if log_file is None:
        log_file = os.environ.get("ROOTGUARD_LOG_FILE") or None

    level = getattr(logging, log_level.upper(), logging.WARNING)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)

    log = logging.getLogger("rootguard")
    log.setLevel(logging.DEBUG)
    log.propagate = True
