"""
Logging utilities for yeslite.
Provides per-component loggers for tracing statements, scopes and migrations.
"""

import logging
import sys
from typing import Optional
from enum import IntEnum

from yeslite.config import settings


class LogLevel(IntEnum):
    """Log levels for database operations."""
    CRITICAL = 50
    ERROR = 40
    WARNING = 30
    INFO = 20
    DEBUG = 10
    TRACE = 5


def _default_level() -> int:
    try:
        return LogLevel[settings.LOG_LEVEL]
    except KeyError:
        return LogLevel.WARNING


class DatabaseLogger:
    """
    Logger for database operations with support for different components.
    """

    def __init__(self, name: str = "yeslite", level: Optional[int] = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(_default_level() if level is None else level)

        # Only add handler if none exists
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_level(self, level: int) -> None:
        """Set the logging level."""
        self.logger.setLevel(level)

    def critical(self, msg: str, **kwargs) -> None:
        self.logger.critical(msg, **kwargs)

    def error(self, msg: str, **kwargs) -> None:
        self.logger.error(msg, **kwargs)

    def warning(self, msg: str, **kwargs) -> None:
        self.logger.warning(msg, **kwargs)

    def info(self, msg: str, **kwargs) -> None:
        self.logger.info(msg, **kwargs)

    def debug(self, msg: str, **kwargs) -> None:
        self.logger.debug(msg, **kwargs)

    def trace(self, msg: str, **kwargs) -> None:
        """Log trace message (very verbose)."""
        if self.logger.isEnabledFor(LogLevel.TRACE):
            self.logger.log(LogLevel.TRACE, msg, **kwargs)


# Global logger instances for different components
_loggers = {}


def get_logger(component: str = "yeslite") -> DatabaseLogger:
    """
    Get or create a logger for a specific component.

    Args:
        component: Name of the component (e.g., 'connection', 'statement')

    Returns:
        DatabaseLogger instance for the component
    """
    if component not in _loggers:
        _loggers[component] = DatabaseLogger(f"yeslite.{component}")
    return _loggers[component]


def set_global_level(level: int) -> None:
    """Set logging level for all components."""
    for logger in _loggers.values():
        logger.set_level(level)


def _shorten(sql: str, limit: int = 80) -> str:
    text = " ".join(sql.split())
    return text if len(text) <= limit else text[:limit - 3] + "..."


def log_statement_prepare(sql: str, component: str = "statement") -> None:
    """Log preparation of a new statement."""
    get_logger(component).debug(f"Preparing: {_shorten(sql)}")


def log_statement_execute(sql: str, component: str = "statement") -> None:
    """Log a statement execution."""
    get_logger(component).trace(f"Executing: {_shorten(sql)}")


def log_cache_evict(sql: str, component: str = "statement") -> None:
    """Log eviction of a cached statement."""
    get_logger(component).debug(f"Evicted from cache: {_shorten(sql)}")


def log_scope_open(kind: str, name: str, component: str = "transaction") -> None:
    """Log the start of a transaction or savepoint."""
    get_logger(component).debug(f"Opened {kind} '{name}'")


def log_scope_close(kind: str, name: str, outcome: str, component: str = "transaction") -> None:
    """Log the end of a transaction or savepoint."""
    get_logger(component).debug(f"{outcome.capitalize()} {kind} '{name}'")


def log_migration_apply(version: int, description: Optional[str] = None,
                        component: str = "migration") -> None:
    """Log a migration being applied."""
    suffix = f" ({description})" if description else ""
    get_logger(component).info(f"Applying migration {version}{suffix}")
