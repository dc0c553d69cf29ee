"""Logging setup for applications embedding yowlink."""

import logging
import sys
from typing import Optional, TextIO, Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def configure_logging(
    level: Union[str, int] = "info",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    Calling it again only changes the level.

    Args:
        level: "error", "warn", "info", "debug", or a logging level number
        stream: Output stream (default: stderr)

    Returns:
        The "yowlink" logger
    """
    if isinstance(level, str):
        try:
            level = _LEVELS[level.lower()]
        except KeyError:
            raise ValueError(f"Unknown log level: {level}") from None

    logger = logging.getLogger("yowlink")
    logger.setLevel(level)

    if not any(getattr(h, "_yowlink", False) for h in logger.handlers):
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._yowlink = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
