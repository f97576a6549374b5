"""Logging utilities."""

import logging
import sys


CLI_FORMAT = "%(levelname)s: %(message)s"
DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO"):
    """Setup logging configuration.

    Warnings and errors are rendered as ``WARNING: ...`` and ``ERROR: ...``
    lines on stderr. At DEBUG level the timestamped format is used instead.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format=DEBUG_FORMAT if log_level <= logging.DEBUG else CLI_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("ruamel").setLevel(logging.WARNING)
