"""
Library configuration.
Reads settings from environment variables with sensible defaults.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Connection defaults loaded from environment variables."""

    def __init__(self):
        # Number of prepared statements kept per connection
        self.STATEMENT_CACHE_SIZE: int = int(
            os.environ.get("YESLITE_STATEMENT_CACHE_SIZE", "128")
        )

        # Milliseconds the engine waits on a locked database before failing
        self.BUSY_TIMEOUT_MS: int = int(os.environ.get("YESLITE_BUSY_TIMEOUT_MS", "5000"))

        # Journal mode applied to writable file databases
        self.JOURNAL_MODE: str = os.environ.get("YESLITE_JOURNAL_MODE", "WAL")

        # Enforce foreign keys on every new connection
        self.FOREIGN_KEYS: bool = _env_bool("YESLITE_FOREIGN_KEYS", True)

        # Level for the yeslite.* component loggers
        self.LOG_LEVEL: str = os.environ.get("YESLITE_LOG_LEVEL", "WARNING").upper()

        # Longest SQL text accepted by prepare/exec
        self.MAX_SQL_LENGTH: int = int(os.environ.get("YESLITE_MAX_SQL_LENGTH", "1000000"))


settings = Settings()
