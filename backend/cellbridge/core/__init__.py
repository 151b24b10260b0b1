from .config import settings, Settings
from .log import setup_logging

__all__ = ["settings", "Settings", "setup_logging"]
