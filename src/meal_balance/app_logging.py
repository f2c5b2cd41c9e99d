"""Logging configuration helpers."""

import logging

_LOGGER_NAME = "meal_balance"
# The Supabase client logs every HTTP request through httpx at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


def resolve_level(level: int | str) -> int:
    """Map a configured level name (or number) to a logging level."""
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Attach one stream handler to the service logger and quiet HTTP chatter."""
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(resolve_level(level))
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
