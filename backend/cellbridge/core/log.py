"""Logging setup for the bridge."""
import logging
from typing import Optional

from .config import settings

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

logger = logging.getLogger("cellbridge")


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a stream handler to the ``cellbridge`` logger."""
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    # Avoid duplicate handlers on repeated calls
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
