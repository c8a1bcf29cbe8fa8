"""
glassbox/utils/logger.py

Logger factory used by every glassbox module.
"""

import logging
import sys

from glassbox.config import Config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def get_logger(name: str, level: str | int | None = None) -> logging.Logger:
    """
    Get a logger that writes to stderr (stdout is left to the tool transport).
    Args:
        name: Logger name, usually __name__.
        level: Optional level override; defaults to Config.LOG_LEVEL.
    Returns:
        The configured logger.
    """
    logger = logging.getLogger(name)

    # avoid adding duplicate handlers when a module is re-imported
    if logger.handlers:
        return logger

    logger.setLevel(level if level is not None else Config.LOG_LEVEL.upper())

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
