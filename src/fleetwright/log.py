"""
Fleetwright Logging Setup

Maps ``-v`` counts to logging levels and installs a console handler on
the ``fleetwright`` logger. Library code only ever logs through
``logging.getLogger(__name__)``; nothing in the engine prints.
"""

import logging
from typing import Optional

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a verbosity count to a logging level."""
    if verbosity <= 0:
        return logging.WARNING
    return VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)


def configure_logging(
    verbosity: int = 0,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
) -> logging.Logger:
    """
    Configure logging for the ``fleetwright`` package.

    Calling it again replaces the handler installed by the previous call.

    Args:
        verbosity: Number of -v flags (0 = warnings only)
        format_string: Custom format string (chosen from the level if None)
        handler: Handler to install (a stderr StreamHandler if None)

    Returns:
        The configured package logger
    """
    level = get_level_from_verbosity(verbosity)
    if format_string is None:
        format_string = DEBUG_FORMAT if level <= logging.DEBUG else DEFAULT_FORMAT

    logger = logging.getLogger('fleetwright')
    logger.setLevel(level)

    for existing in logger.handlers[:]:
        if getattr(existing, '_fleetwright_handler', False):
            logger.removeHandler(existing)

    handler = handler or logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(format_string))
    handler._fleetwright_handler = True
    logger.addHandler(handler)
    return logger
