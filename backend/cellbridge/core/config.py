import os

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Settings:
    """Bridge settings loaded from environment variables."""

    def __init__(self):
        # Logging
        self.LOG_LEVEL = os.getenv("CELLBRIDGE_LOG_LEVEL", "INFO").upper()
        self.DEBUG = os.getenv("CELLBRIDGE_DEBUG", "false").lower() == "true"

        # Kernel
        self.EXECUTE_TIMEOUT = _float_env("CELLBRIDGE_EXECUTE_TIMEOUT", 60.0)
        self.READY_TIMEOUT = _float_env("CELLBRIDGE_READY_TIMEOUT", 30.0)

    @property
    def execute_timeout(self):
        """Execute timeout in seconds, or None when disabled (0 or negative)"""
        return self.EXECUTE_TIMEOUT if self.EXECUTE_TIMEOUT > 0 else None

    @property
    def ready_timeout(self):
        return self.READY_TIMEOUT if self.READY_TIMEOUT > 0 else None


settings = Settings()
