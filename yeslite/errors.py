"""
Error taxonomy for yeslite.

Every failure raised by the library derives from DatabaseError. Failures
reported by the SQLite engine are translated here, in one place, so the
rest of the code base never inspects apsw exception types directly. The
engine's message text is preserved verbatim and the original exception is
chained as __cause__.
"""

import enum
from contextlib import contextmanager
from typing import Iterator, Optional

import apsw


class DatabaseError(Exception):
    """Base exception for all yeslite errors."""

    def __init__(self, message: str, engine_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.engine_code = engine_code


class SQLSyntaxError(DatabaseError):
    """Malformed SQL, raised when a statement is prepared."""
    pass


class ConstraintKind(enum.Enum):
    """Which constraint a write violated."""
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    PRIMARY_KEY = "primary_key"
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"
    OTHER = "other"


class ConstraintViolation(DatabaseError):
    """A write violated a table constraint."""

    def __init__(self, message: str, kind: ConstraintKind = ConstraintKind.OTHER,
                 engine_code: Optional[int] = None):
        super().__init__(message, engine_code)
        self.kind = kind


class NoSuchTable(DatabaseError):
    pass


class NoSuchColumn(DatabaseError):
    pass


class TypeMismatch(DatabaseError, TypeError):
    """A value cannot be represented by the engine's value model."""
    pass


class ParameterError(DatabaseError):
    """Base class for parameter binding failures."""
    pass


class ParameterCountMismatch(ParameterError):
    pass


class MissingParameter(ParameterError, KeyError):
    """A named placeholder has no entry in the supplied mapping."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.message


class BusyOrLocked(DatabaseError):
    """Another connection holds a conflicting lock."""
    pass


class ReadOnlyDatabase(DatabaseError):
    pass


class CannotOpen(DatabaseError):
    pass


class ConnectionClosed(DatabaseError):
    pass


class InvalidScopeOperation(DatabaseError):
    """A transaction, savepoint or registration call used out of order."""
    pass


class MigrationFailed(DatabaseError):
    """
    A migration batch failed and was rolled back.

    The schema version is guaranteed unchanged, so partial_version is
    always None.
    """

    partial_version = None

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class SecurityError(DatabaseError):
    """Input rejected by validation before reaching the engine."""
    pass


class ResourceLimitError(SecurityError):
    pass


# ── Engine error translation ─────────────────────────────────────

_SYNTAX_MARKERS = (
    "syntax error",
    "incomplete input",
    "unrecognized token",
    "multiple statements",
)

_CONSTRAINT_CODES = {
    "SQLITE_CONSTRAINT_UNIQUE": ConstraintKind.UNIQUE,
    "SQLITE_CONSTRAINT_PRIMARYKEY": ConstraintKind.PRIMARY_KEY,
    "SQLITE_CONSTRAINT_NOTNULL": ConstraintKind.NOT_NULL,
    "SQLITE_CONSTRAINT_FOREIGNKEY": ConstraintKind.FOREIGN_KEY,
    "SQLITE_CONSTRAINT_CHECK": ConstraintKind.CHECK,
}

_CONSTRAINT_MESSAGES = (
    ("unique constraint failed", ConstraintKind.UNIQUE),
    ("not null constraint failed", ConstraintKind.NOT_NULL),
    ("foreign key constraint failed", ConstraintKind.FOREIGN_KEY),
    ("check constraint failed", ConstraintKind.CHECK),
)


def is_syntax_message(message: str) -> bool:
    """Return True if an engine message describes malformed SQL."""
    lowered = message.lower()
    return any(marker in lowered for marker in _SYNTAX_MARKERS)


def _constraint_kind(code: Optional[int], message: str) -> ConstraintKind:
    if code is not None:
        name = apsw.mapping_extended_result_codes.get(code)
        if name in _CONSTRAINT_CODES:
            return _CONSTRAINT_CODES[name]
    lowered = message.lower()
    for marker, kind in _CONSTRAINT_MESSAGES:
        if marker in lowered:
            return kind
    return ConstraintKind.OTHER


def translate(exc: BaseException) -> DatabaseError:
    """
    Map an engine exception onto the yeslite taxonomy.

    Args:
        exc: Exception raised by apsw (or already a DatabaseError)

    Returns:
        The matching DatabaseError subclass instance
    """
    if isinstance(exc, DatabaseError):
        return exc

    message = str(exc)
    code = getattr(exc, "extendedresult", None)

    if isinstance(exc, apsw.ConstraintError):
        return ConstraintViolation(message, _constraint_kind(code, message), code)
    if isinstance(exc, (apsw.BusyError, apsw.LockedError)):
        return BusyOrLocked(message, code)
    if isinstance(exc, apsw.ReadOnlyError):
        return ReadOnlyDatabase(message, code)
    if isinstance(exc, apsw.CantOpenError):
        return CannotOpen(message, code)
    if isinstance(exc, apsw.MismatchError):
        return TypeMismatch(message, code)
    if isinstance(exc, apsw.BindingsError):
        return ParameterCountMismatch(message, code)
    if isinstance(exc, (apsw.ConnectionClosedError, apsw.CursorClosedError)):
        return ConnectionClosed(message, code)
    if isinstance(exc, OverflowError):
        return TypeMismatch(message)
    if isinstance(exc, apsw.SQLError):
        lowered = message.lower()
        if "no such table" in lowered:
            return NoSuchTable(message, code)
        if "no such column" in lowered:
            return NoSuchColumn(message, code)
        if is_syntax_message(message):
            return SQLSyntaxError(message, code)
    return DatabaseError(message, code)


@contextmanager
def engine_errors() -> Iterator[None]:
    """Translate apsw errors raised inside the block."""
    try:
        yield
    except (apsw.Error, OverflowError) as exc:
        raise translate(exc) from exc
