"""Logging configuration helpers."""

import logging
from collections.abc import Iterable

# The Supabase client logs every HTTP request at INFO through these.
_CHATTY_LOGGERS = ("httpx", "httpcore", "hpack")


def configure_logging(
    level: int | str = logging.INFO,
    quiet_loggers: Iterable[str] = _CHATTY_LOGGERS,
) -> None:
    """Configure the ``wakti`` logger with a single stream handler.

    ``level`` accepts a number or a level name such as ``"debug"``.
    """
    logger = logging.getLogger("wakti")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
