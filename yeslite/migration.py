"""
Version-tracked schema migrations.

Applied versions are recorded in the `_schema_version` table, which is
created on first use. A batch of migrations runs inside one transaction:
either every pending migration is applied and recorded, or none is.
"""

import re
import time
from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Iterator, List, Optional, Sequence

from yeslite.errors import (
    DatabaseError,
    InvalidScopeOperation,
    MigrationFailed,
    NoSuchTable,
)
from yeslite.log import get_logger, log_migration_apply
from yeslite.security import quote_identifier, validate_sql_length
from yeslite.transaction import TransactionMode

if TYPE_CHECKING:
    from yeslite.api import Connection


SCHEMA_VERSION_TABLE = "_schema_version"

DEFAULT_IGNORED_ERRORS = ("already exists", "duplicate column name")

_NAME = r'(?:"(?:[^"]|"")+"|`[^`]+`|\[[^\]]+\]|[A-Za-z_][\w$]*)'
_CREATE_TABLE = re.compile(
    r'^\s*CREATE\s+(?:TEMP\s+|TEMPORARY\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?'
    rf'(?:{_NAME}\s*\.\s*)?({_NAME})',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Migration:
    """One schema change."""
    version: int
    sql: str
    description: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.version, bool) or not isinstance(self.version, int) or self.version < 1:
            raise ValueError(f"Migration version must be a positive integer, got {self.version!r}")
        if not isinstance(self.sql, str):
            raise ValueError(f"Migration {self.version} SQL must be a string")

    @classmethod
    def coerce(cls, value: Any) -> 'Migration':
        """Accept a Migration or a mapping with version/sql/description keys."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(value['version'], value['sql'], value.get('description'))
        raise TypeError(f"Expected Migration or mapping, got {type(value).__name__}")


@dataclass(frozen=True)
class MigrationRecord:
    """A row of the version tracking table."""
    version: int
    description: Optional[str]
    applied_at: int


def _unquote(name: str) -> str:
    if name[0] == '"' and name[-1] == '"':
        return name[1:-1].replace('""', '"')
    if (name[0], name[-1]) in (('`', '`'), ('[', ']')):
        return name[1:-1]
    return name


def extract_table_name(sql: str) -> Optional[str]:
    """
    Get the table name from a CREATE TABLE statement.

    Returns:
        Unquoted table name, or None if sql is not a CREATE TABLE
    """
    match = _CREATE_TABLE.match(sql)
    if not match:
        return None
    return _unquote(match.group(1))


def sort_migrations(migrations: Iterable[Any]) -> List[Migration]:
    """
    Sort migrations by version.

    Raises:
        ValueError: If a version appears more than once
    """
    ordered = sorted((Migration.coerce(m) for m in migrations), key=lambda m: m.version)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.version == current.version:
            raise ValueError(f"Duplicate migration version: {current.version}")
    return ordered


class MigrationRunner:
    """
    Applies migrations to a connection.

    Usage:
        runner = MigrationRunner(db)
        runner.migrate([
            Migration(1, "CREATE TABLE users (id INTEGER PRIMARY KEY)"),
            Migration(2, "ALTER TABLE users ADD COLUMN name TEXT"),
        ])
    """

    def __init__(self, connection: 'Connection'):
        self.connection = connection
        self.logger = get_logger("migration")

    # ── Version tracking ─────────────────────────────────────────

    def _ensure_table(self) -> None:
        self.connection.run(
            f"CREATE TABLE IF NOT EXISTS {SCHEMA_VERSION_TABLE} ("
            "version INTEGER UNIQUE NOT NULL, "
            "description TEXT, "
            "applied_at INTEGER NOT NULL)"
        )

    def _record(self, version: int, description: Optional[str]) -> None:
        self.connection.run(
            f"INSERT OR REPLACE INTO {SCHEMA_VERSION_TABLE} (version, description, applied_at) "
            "VALUES (?, ?, ?)",
            [version, description, int(time.time())],
        )

    def get_schema_version(self) -> int:
        """Current schema version; 0 when nothing was ever recorded."""
        if not self.connection.table_exists(SCHEMA_VERSION_TABLE):
            return 0
        row = self.connection.get(f"SELECT MAX(version) AS version FROM {SCHEMA_VERSION_TABLE}")
        if row is None or row['version'] is None:
            return 0
        return row['version']

    def set_schema_version(self, version: int) -> None:
        """
        Force the recorded schema version.

        Records above `version` are removed so get_schema_version() returns
        exactly `version` afterwards.
        """
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise ValueError(f"Schema version must be a non-negative integer, got {version!r}")
        with self._atomic():
            self._ensure_table()
            self.connection.run(f"DELETE FROM {SCHEMA_VERSION_TABLE} WHERE version > ?", [version])
            self._record(version, None)

    def get_migration_history(self) -> List[MigrationRecord]:
        """Applied migrations, oldest version first."""
        if not self.connection.table_exists(SCHEMA_VERSION_TABLE):
            return []
        rows = self.connection.all(
            f"SELECT version, description, applied_at FROM {SCHEMA_VERSION_TABLE} ORDER BY version"
        )
        return [MigrationRecord(row['version'], row['description'], row['applied_at']) for row in rows]

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """Run a block in a transaction, or a savepoint if one is already open."""
        scope = self.connection.current_scope
        if scope is None:
            with self.connection.transaction():
                yield
        else:
            with scope.savepoint():
                yield

    # ── Migrations ───────────────────────────────────────────────

    def migrate(self, migrations: Sequence[Any], target_version: Optional[int] = None) -> int:
        """
        Apply pending migrations in ascending version order.

        Args:
            migrations: Migration objects (or mappings), in any order
            target_version: Highest version to apply; all pending when omitted

        Returns:
            Schema version after the batch

        Raises:
            MigrationFailed: If any migration fails; nothing from the batch is kept
            InvalidScopeOperation: If a transaction is already active
            ValueError: On duplicate or invalid versions
        """
        ordered = sort_migrations(migrations)
        if self.connection.in_transaction:
            raise InvalidScopeOperation("Cannot migrate inside an active transaction")

        current = self.get_schema_version()
        pending = [
            m for m in ordered
            if m.version > current and (target_version is None or m.version <= target_version)
        ]
        if not pending:
            self.logger.debug(f"No pending migrations (version {current})")
            return current

        tx = self.connection.begin(TransactionMode.IMMEDIATE)
        applying = None
        try:
            self._ensure_table()
            for migration in pending:
                applying = migration
                log_migration_apply(migration.version, migration.description)
                validate_sql_length(migration.sql)
                self.connection.exec(migration.sql)
                self._record(migration.version, migration.description)
            tx.commit()
        except DatabaseError as e:
            if tx.is_active:
                tx.rollback()
            version = applying.version if applying is not None else None
            self.logger.error(f"Migration {version} failed, rolled back: {e}")
            raise MigrationFailed(f"Migration {version} failed: {e}", version=version) from e
        except BaseException:
            if tx.is_active:
                tx.rollback()
            raise

        new_version = pending[-1].version
        self.logger.info(f"Schema migrated from version {current} to {new_version}")
        return new_version

    def init_schema(self, sql: str, version: int = 1, description: Optional[str] = None) -> int:
        """Bootstrap a new database with one migration."""
        return self.migrate([Migration(version, sql, description)])

    # ── Idempotent helpers ───────────────────────────────────────

    def run_safe(self, sql: str, ignore_errors: Sequence[str] = DEFAULT_IGNORED_ERRORS) -> bool:
        """
        Execute SQL, tolerating expected failures.

        Args:
            sql: One or more statements
            ignore_errors: Substrings of error messages to tolerate

        Returns:
            True if the SQL ran, False if it failed with an ignored error
        """
        try:
            self.connection.exec(sql)
        except DatabaseError as e:
            message = str(e).lower()
            if any(pattern.lower() in message for pattern in ignore_errors):
                self.logger.debug(f"Ignored error: {e}")
                return False
            raise
        return True

    def create_table_if_not_exists(self, sql: str) -> bool:
        """
        Run a CREATE TABLE statement unless the table already exists.

        Returns:
            True if the table was created

        Raises:
            ValueError: If sql is not a CREATE TABLE statement
        """
        table = extract_table_name(sql)
        if table is None:
            raise ValueError("Could not find a table name in CREATE TABLE statement")
        if self.connection.table_exists(table):
            return False
        self.connection.prepare(sql).run()
        return True

    def add_column_if_not_exists(self, table: str, column: str, definition: str) -> bool:
        """
        Add a column unless it already exists.

        Args:
            table: Existing table name
            column: Column to add
            definition: Type and constraints, e.g. "INTEGER DEFAULT 1"

        Returns:
            True if the column was added

        Raises:
            NoSuchTable: If the table does not exist
        """
        if not self.connection.table_exists(table):
            raise NoSuchTable(f"no such table: {table}")
        existing = {col['name'].lower() for col in self.connection.get_columns(table)}
        if column.lower() in existing:
            return False
        self.connection.prepare(
            f"ALTER TABLE {quote_identifier(table)} ADD COLUMN {quote_identifier(column)} {definition}"
        ).run()
        return True
