"""Process-wide logging setup."""

import logging
from typing import Optional

from civictrack.core.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s"


def configure_logging(level_name: Optional[str] = None) -> logging.Logger:
    level_name = (level_name or settings.LOG_LEVEL or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    logger = logging.getLogger("civictrack")
    logger.setLevel(level)
    if not logger.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)
    for handler in logger.handlers:
        handler.setLevel(level)
    logger.propagate = False

    logger.info(f"Logging initialized at {level_name}")
    return logger
