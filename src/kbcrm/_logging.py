"""Logging configuration for kbcrm.

Modules log through the standard library:
    import logging
    log = logging.getLogger(__name__)

Configuration errors in entity definitions are logged as warnings and never
abort an evaluation, so the package logger is the place where malformed
steps and filters become visible.

The log level can be configured via the KBCRM_LOG_LEVEL environment variable:
    - DEBUG: Detailed debugging information (skipped files, resolution misses)
    - INFO: General operational messages (default)
    - WARNING: Malformed configuration that was ignored
    - ERROR: Failed note creation or linking
"""

import logging
import os
import sys

PACKAGE_LOGGER = "kbcrm"


def configure_logging() -> None:
    """Configure logging for the kbcrm package.

    Call this once at application startup (e.g., in cli.py).
    Subsequent calls are no-ops.
    """
    root_logger = logging.getLogger(PACKAGE_LOGGER)

    if root_logger.handlers:
        return

    level_name = os.environ.get("KBCRM_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="[%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    root_logger.propagate = False


def set_quiet_mode(quiet: bool) -> None:
    """Raise the package log level to ERROR while quiet mode is active."""
    root_logger = logging.getLogger(PACKAGE_LOGGER)
    if quiet:
        root_logger.setLevel(logging.ERROR)
        for handler in root_logger.handlers:
            handler.setLevel(logging.ERROR)
        return

    level_name = os.environ.get("KBCRM_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)
