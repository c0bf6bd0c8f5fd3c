"""
Input validation for yeslite.
Checks identifiers, pragma values, SQL size and database paths before they
reach the engine.
"""

import os
import re
from pathlib import Path
from typing import Any, Union

from yeslite.config import settings
from yeslite.errors import ResourceLimitError, SecurityError


class PathTraversalError(SecurityError):
    """Raised when a database path is unsafe."""
    pass


class SecurityConfig:
    """Validation limits."""

    MAX_PATH_LENGTH = 4096
    MAX_IDENTIFIER_LENGTH = 128

    MEMORY_TARGET = ':memory:'


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_BARE_PRAGMA_VALUE = re.compile(r'^-?[A-Za-z0-9_.]+$')


def validate_identifier(name: Any, kind: str = "Identifier") -> str:
    """
    Validate a name that will be interpolated into SQL.

    Args:
        name: Name to validate
        kind: Human readable name for error messages

    Returns:
        The validated name

    Raises:
        SecurityError: If name is invalid
    """
    if not isinstance(name, str) or not name:
        raise SecurityError(f"{kind} cannot be empty")

    if len(name) > SecurityConfig.MAX_IDENTIFIER_LENGTH:
        raise SecurityError(
            f"{kind} too long: {len(name)} chars (max {SecurityConfig.MAX_IDENTIFIER_LENGTH})"
        )

    if not _IDENTIFIER.match(name):
        raise SecurityError(
            f"{kind} '{name}' must start with a letter or underscore and "
            f"contain only letters, numbers, and underscores"
        )
    return name


def quote_identifier(name: str) -> str:
    """
    Quote a table or column name for use in SQL text.

    Raises:
        SecurityError: If name is empty or contains a NUL byte
    """
    if not isinstance(name, str) or not name:
        raise SecurityError("Identifier cannot be empty")
    if '\0' in name:
        raise SecurityError("Null bytes not allowed in identifiers")
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a string as an SQL text literal."""
    if '\0' in value:
        raise SecurityError("Null bytes not allowed in SQL literals")
    return "'" + value.replace("'", "''") + "'"


def validate_pragma_name(name: Any) -> str:
    return validate_identifier(name, "Pragma name")


def format_pragma_value(value: Any) -> str:
    """
    Render a pragma argument as SQL text.

    Args:
        value: int, float, bool or str

    Returns:
        SQL text for the right hand side of `PRAGMA name = ...`

    Raises:
        SecurityError: If the value has an unsupported type
    """
    if isinstance(value, bool):
        return 'ON' if value else 'OFF'
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        if _BARE_PRAGMA_VALUE.match(value):
            return value
        return quote_literal(value)
    raise SecurityError(f"Unsupported pragma value type: {type(value).__name__}")


def validate_sql_length(sql: str, limit: int = None) -> None:
    """
    Validate SQL statement length.

    Args:
        sql: SQL statement to validate
        limit: Maximum length; defaults to the configured limit

    Raises:
        ResourceLimitError: If SQL is too long
    """
    if limit is None:
        limit = settings.MAX_SQL_LENGTH
    if len(sql) > limit:
        raise ResourceLimitError(
            f"SQL statement too long: {len(sql)} chars (max {limit})"
        )


def validate_database_path(target: Union[str, os.PathLike]) -> str:
    """
    Validate and normalize a database target.

    Args:
        target: File path or ':memory:'

    Returns:
        ':memory:' unchanged, otherwise the absolute path

    Raises:
        PathTraversalError: If path contains NUL bytes
        SecurityError: If path validation fails
    """
    filepath = os.fspath(target)
    if not isinstance(filepath, str):
        raise SecurityError("Database path must be text")

    if filepath == SecurityConfig.MEMORY_TARGET:
        return filepath

    if not filepath:
        raise SecurityError("Database path cannot be empty")

    if len(filepath) > SecurityConfig.MAX_PATH_LENGTH:
        raise SecurityError(f"Path too long (max {SecurityConfig.MAX_PATH_LENGTH})")

    # Detect null bytes (truncation attack)
    if '\0' in filepath:
        raise PathTraversalError("Null bytes not allowed in path")

    try:
        path = Path(filepath).expanduser().resolve()
    except (ValueError, OSError) as e:
        raise SecurityError(f"Invalid path: {e}") from e

    if path.exists() and path.is_dir():
        raise SecurityError("Path must be a file, not a directory")

    return str(path)
