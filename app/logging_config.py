"""Logging setup shared by the web app and scripts."""

import logging

from app.config import get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging() -> logging.Logger:
    """Configure the root logger once and return the application logger."""
    level = getattr(logging, get_settings().log_level, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    logger = logging.getLogger("app")
    logger.setLevel(level)
    return logger
