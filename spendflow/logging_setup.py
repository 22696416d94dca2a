"""Central logging configuration for the ``spendflow`` package.

Library modules only call ``logging.getLogger('spendflow.<concern>')``; the
entry point calls :func:`configure_logging` once at startup.
"""

import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "spendflow"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def _parse_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = level.strip().upper()
    if value.isdigit():
        return int(value)
    numeric = getattr(logging, value, None)
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(level: int | str = "INFO", filename: Path | None = None) -> logging.Logger:
    """Attach a single handler to the package logger.

    Logs go to ``filename`` when given, otherwise to stderr. Calling this
    again replaces the previously configured handler.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if not isinstance(handler, logging.NullHandler):
            handler.close()

    if filename is not None:
        handler = logging.FileHandler(filename)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(_parse_level(level))
    logger.propagate = False
    return logger
