from __future__ import annotations

import logging

PACKAGE_LOGGER = "movie_chat_recommender"

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call once per app instance; repeated calls only adjust the level.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    try:
        logger.setLevel(level)
    except ValueError:
        # Unknown level names fall back to INFO rather than failing app startup.
        logger.setLevel(logging.INFO)

    if not any(getattr(h, "_movie_chat_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._movie_chat_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
