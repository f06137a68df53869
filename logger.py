import logging
import os
import sys

BASE_LOGGER_NAME = "placeholder"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logger(level: int = logging.INFO, name: str = BASE_LOGGER_NAME) -> logging.Logger:
    """Create or update the project logger.

    PLACEHOLDER_LOG_LEVEL overrides ``level`` on every call, and the base logger
    always ends up with exactly one stderr StreamHandler.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("PLACEHOLDER_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVELS.get(env_level, level)
    logger.setLevel(level)

    stream_handler = None
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stderr:
            stream_handler = handler
            break

    if stream_handler is None:
        stream_handler = logging.StreamHandler(stream=sys.stderr)
        logger.addHandler(stream_handler)

    stream_handler.setFormatter(
        logging.Formatter(fmt="[%(asctime)s] %(levelname)s: %(message)s", datefmt="%H:%M:%S")
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    # Child of the base logger, e.g. "placeholder.store"
    base = logging.getLogger(BASE_LOGGER_NAME)
    if not base.handlers:
        setup_logger()
    return base.getChild(name)
