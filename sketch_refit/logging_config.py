"""Console/file logging for the ``sketch_refit`` logger tree.

Modules log through ``logging.getLogger(__name__)``; nothing is emitted until
the host application calls :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

LOGGER_NAME = "sketch_refit"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%H:%M:%S"

logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Route engine logs to stderr and, optionally, to *log_file* (overwritten).

    Calling it again replaces the handlers from the previous call, so a host
    that reconfigures never gets duplicated lines.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug("logging to %s", log_file or "stderr")
    return logger
