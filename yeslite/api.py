"""
Public API for yeslite.
Provides the Connection object applications use to talk to a database.
"""

import os
import weakref
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import apsw

from yeslite.config import settings
from yeslite.cursor import ResultIterator
from yeslite.errors import (
    ConnectionClosed,
    DatabaseError,
    InvalidScopeOperation,
    engine_errors,
)
from yeslite.log import get_logger
from yeslite.migration import Migration, MigrationRecord, MigrationRunner
from yeslite.record import Row
from yeslite.security import (
    SecurityConfig,
    format_pragma_value,
    quote_identifier,
    validate_database_path,
    validate_identifier,
    validate_pragma_name,
    validate_sql_length,
)
from yeslite.statement import RunResult, Statement, StatementCache
from yeslite.transaction import Savepoint, Scope, ScopeState, Transaction, TransactionMode


MEMORY = SecurityConfig.MEMORY_TARGET

# Applied to every writable connection after open
TUNING_PRAGMAS = (
    ("synchronous", "NORMAL"),
    ("cache_size", -64000),
    ("temp_store", "MEMORY"),
    ("mmap_size", 268435456),
)

_SCHEMA_ORDER = (
    "SELECT sql FROM sqlite_master WHERE sql IS NOT NULL "
    "ORDER BY CASE WHEN type = 'table' THEN 1 WHEN type = 'index' THEN 2 ELSE 3 END, name"
)


def open_flags(target: str, readonly: bool, create: bool, readwrite: bool) -> int:
    """
    Compute engine open flags from connection options.

    `readonly` wins over the other options and is ignored for in-memory
    databases. `create` without `readwrite` still opens read-write.
    """
    if target == MEMORY:
        return apsw.SQLITE_OPEN_READWRITE | apsw.SQLITE_OPEN_CREATE
    if readonly:
        return apsw.SQLITE_OPEN_READONLY

    flags = 0
    if readwrite:
        flags |= apsw.SQLITE_OPEN_READWRITE
    if create:
        flags |= apsw.SQLITE_OPEN_CREATE | apsw.SQLITE_OPEN_READWRITE
    if not flags:
        flags = apsw.SQLITE_OPEN_READWRITE | apsw.SQLITE_OPEN_CREATE
    return flags


class Connection:
    """
    An open database.

    Usage:
        db = yeslite.connect('app.db')
        db.run('CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)')
        db.run('INSERT INTO users (name) VALUES (?)', ['Alice'])
        row = db.get('SELECT * FROM users WHERE id = ?', [1])
        db.close()

    Or with context manager:
        with yeslite.connect('app.db') as db:
            rows = db.all('SELECT * FROM users')
    """

    def __init__(self, target: Union[str, os.PathLike] = MEMORY, *, readonly: bool = False,
                 create: bool = True, readwrite: bool = True,
                 cache_size: Optional[int] = None, busy_timeout: Optional[int] = None):
        """
        Open or create a database.

        Args:
            target: Path to the database file, or ':memory:'
            readonly: Open without write access (ignored for ':memory:')
            create: Create the file if it does not exist
            readwrite: Open for reading and writing
            cache_size: Prepared statement cache capacity
            busy_timeout: Milliseconds to wait on a locked database

        Raises:
            CannotOpen: If the database cannot be opened
            SecurityError: If the path is invalid
        """
        self.logger = get_logger("connection")
        self._filename = os.fspath(target)
        path = validate_database_path(target)
        self.readonly = bool(readonly) and path != MEMORY

        if cache_size is None:
            cache_size = settings.STATEMENT_CACHE_SIZE
        if busy_timeout is None:
            busy_timeout = settings.BUSY_TIMEOUT_MS

        with engine_errors():
            self._engine = apsw.Connection(
                path,
                flags=open_flags(path, readonly, create, readwrite),
                statementcachesize=max(cache_size, 0),
            )

        self._closed = False
        self._scopes: List[Scope] = []
        self._savepoint_counter = 0
        self._iterators = weakref.WeakSet()
        self._functions: Dict[str, Callable] = {}
        self._collations: Dict[str, Callable] = {}
        self.statement_cache = StatementCache(self, cache_size)
        self.migrations = MigrationRunner(self)

        try:
            self._configure(busy_timeout)
        except DatabaseError:
            self._engine.close()
            self._closed = True
            raise

        self.logger.info(f"Opened database '{self._filename}'")

    def _configure(self, busy_timeout: int) -> None:
        with engine_errors():
            self._engine.set_busy_timeout(busy_timeout)
        if self.readonly:
            return
        self._rows(f"PRAGMA journal_mode = {format_pragma_value(settings.JOURNAL_MODE)}")
        for name, value in TUNING_PRAGMAS:
            self._rows(f"PRAGMA {name} = {format_pragma_value(value)}")
        self._rows(f"PRAGMA foreign_keys = {format_pragma_value(settings.FOREIGN_KEYS)}")

    # ── Internals ────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._closed:
            raise ConnectionClosed("Database connection is closed")

    def _rows(self, sql: str, bindings: Sequence[Any] = ()) -> Tuple[List[str], List[tuple]]:
        """Run uncached SQL and return (column names, rows)."""
        self._check_open()
        cursor = self._engine.cursor()
        try:
            with engine_errors():
                cursor.execute(sql, bindings)
                try:
                    names = [name for name, _ in cursor.get_description()]
                except apsw.ExecutionCompleteError:
                    names = []
                rows = list(cursor)
        finally:
            cursor.close()
        return names, rows

    def _control(self, sql: str) -> None:
        """Run a transaction control statement."""
        self._rows(sql)

    def _register_iterator(self, iterator: ResultIterator) -> None:
        self._iterators.add(iterator)

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self._savepoint_counter}"

    def _reconcile_scopes(self) -> None:
        """Mark scopes rolled back if the engine ended the transaction itself."""
        if self._scopes and not self._engine.in_transaction:
            self.logger.warning(
                "Engine transaction ended outside of the transaction API; "
                f"marking {len(self._scopes)} open scope(s) as rolled back"
            )
            while self._scopes:
                self._scopes.pop()._end(ScopeState.ROLLED_BACK)

    def _innermost_scope(self) -> Optional[Scope]:
        return self._scopes[-1] if self._scopes else None

    # ── Connection state ─────────────────────────────────────────

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def in_transaction(self) -> bool:
        """True while any transaction or savepoint is active."""
        if self._closed:
            return False
        self._reconcile_scopes()
        return bool(self._scopes) or self._engine.in_transaction

    @property
    def current_scope(self) -> Optional[Scope]:
        """Innermost active transaction or savepoint."""
        if self._closed:
            return None
        self._reconcile_scopes()
        return self._innermost_scope()

    def close(self) -> None:
        """
        Close the database.

        Open iterators are closed, cached statements are finalized and any
        open transaction is rolled back. Calling close() again does nothing.
        """
        if self._closed:
            return

        if not self.readonly and self._filename != MEMORY:
            try:
                self._rows("PRAGMA wal_checkpoint(TRUNCATE)")
            except DatabaseError as e:
                self.logger.warning(f"Checkpoint before close failed: {e}")

        try:
            for iterator in list(self._iterators):
                try:
                    iterator.close()
                except DatabaseError as e:
                    self.logger.warning(f"Closing iterator failed: {e}")
            self.statement_cache.clear()

            while self._scopes:
                self._scopes.pop()._end(ScopeState.ROLLED_BACK)
        finally:
            self._closed = True
            self._engine.close(force=True)
        self.logger.info(f"Closed database '{self._filename}'")

    # ── Statements ───────────────────────────────────────────────

    def prepare(self, sql: str) -> Statement:
        """
        Get a prepared statement, from the cache when possible.

        Raises:
            SQLSyntaxError: If the SQL is malformed
            ConnectionClosed: If the connection is closed
        """
        self._check_open()
        validate_sql_length(sql)
        return self.statement_cache.get(sql)

    query = prepare

    def run(self, sql: str, params: Any = None) -> RunResult:
        return self.prepare(sql).run(params)

    def all(self, sql: str, params: Any = None) -> List[Row]:
        return self.prepare(sql).all(params)

    def get(self, sql: str, params: Any = None) -> Optional[Row]:
        return self.prepare(sql).get(params)

    def values(self, sql: str, params: Any = None) -> List[List[Any]]:
        return self.prepare(sql).values(params)

    def iter(self, sql: str, params: Any = None) -> ResultIterator:
        return self.prepare(sql).iter(params)

    def exec(self, sql: str) -> RunResult:
        """
        Execute one or more statements without parameters.

        Returns:
            RunResult with the total number of changed rows
        """
        self._check_open()
        validate_sql_length(sql)
        before = self._engine.total_changes()
        cursor = self._engine.cursor()
        try:
            with engine_errors():
                for _ in cursor.execute(sql):
                    pass
        finally:
            cursor.close()
        return RunResult(
            changes=self._engine.total_changes() - before,
            last_insert_id=self._engine.last_insert_rowid(),
        )

    # ── Transactions ─────────────────────────────────────────────

    def begin(self, mode: Union[TransactionMode, str, None] = TransactionMode.DEFERRED) -> Transaction:
        """
        Start the top-level transaction.

        Args:
            mode: 'deferred', 'immediate' or 'exclusive'

        Raises:
            InvalidScopeOperation: If a transaction is already active
        """
        self._check_open()
        if self.in_transaction:
            raise InvalidScopeOperation(
                "A transaction is already active; use savepoint() for nesting"
            )
        tx = Transaction(self, TransactionMode.parse(mode))
        tx._begin()
        self._scopes.append(tx)
        return tx

    transaction = begin

    def savepoint(self, name: Optional[str] = None) -> Savepoint:
        """Open a savepoint in the innermost active scope."""
        scope = self.current_scope
        if scope is None:
            self._check_open()
            raise InvalidScopeOperation("savepoint() requires an active transaction")
        return scope.savepoint(name)

    def run_in_transaction(self, statements: Sequence[str],
                           mode: Union[TransactionMode, str, None] = None) -> RunResult:
        """
        Execute several SQL strings atomically.

        Returns:
            RunResult with the combined number of changed rows
        """
        changes = 0
        last_insert_id = 0
        with self.begin(mode):
            for sql in statements:
                result = self.exec(sql)
                changes += result.changes
                last_insert_id = result.last_insert_id
        return RunResult(changes=changes, last_insert_id=last_insert_id)

    # ── Pragmas and serialization ────────────────────────────────

    def pragma(self, name: str, value: Any = None) -> Any:
        """
        Read or set a pragma.

        Returns:
            A scalar for single-value pragmas, None when there is no
            result, otherwise a list (of dicts for multi-column rows)
        """
        validate_pragma_name(name)
        if value is not None:
            names, rows = self._rows(f"PRAGMA {name} = {format_pragma_value(value)}")
            if rows:
                return _collapse(names, rows)
        names, rows = self._rows(f"PRAGMA {name}")
        return _collapse(names, rows)

    def serialize(self) -> bytes:
        """Return the whole main database as bytes."""
        self._check_open()
        with engine_errors():
            data = self._engine.serialize("main")
        return data or b""

    def deserialize(self, data: Union[bytes, bytearray, memoryview], readonly: bool = False) -> None:
        """
        Replace the main database with a serialized image.

        Raises:
            InvalidScopeOperation: If a transaction is active
        """
        self._check_open()
        if self.in_transaction:
            raise InvalidScopeOperation("Cannot deserialize inside a transaction")

        image = bytearray(data)
        # In-memory images cannot use WAL; mark them as rollback-journal
        if image[18:20] == b"\x02\x02":
            image[18:20] = b"\x01\x01"

        for iterator in list(self._iterators):
            iterator.close()
        self.statement_cache.clear()

        with engine_errors():
            self._engine.deserialize("main", bytes(image))
        self._rows(f"PRAGMA query_only = {format_pragma_value(bool(readonly))}")

    # ── Schema introspection ─────────────────────────────────────

    def get_tables(self) -> List[str]:
        rows = self.values(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row[0] for row in rows]

    def get_columns(self, table: str) -> List[Dict[str, Any]]:
        """Column descriptions from PRAGMA table_info."""
        _, rows = self._rows(f"PRAGMA table_info({quote_identifier(table)})")
        return [
            {
                'cid': cid,
                'name': name,
                'type': col_type,
                'notnull': bool(notnull),
                'dflt_value': default,
                'pk': pk,
            }
            for cid, name, col_type, notnull, default, pk in rows
        ]

    def get_indexes(self, table: str) -> List[Dict[str, Any]]:
        """Indexes of a table with their column names."""
        _, rows = self._rows(f"PRAGMA index_list({quote_identifier(table)})")
        indexes = []
        for row in rows:
            name, unique, origin, partial = row[1], row[2], row[3], row[4]
            _, info = self._rows(f"PRAGMA index_info({quote_identifier(name)})")
            indexes.append({
                'name': name,
                'unique': bool(unique),
                'origin': origin,
                'partial': bool(partial),
                'columns': [col[2] for col in info],
            })
        return indexes

    def get_table_sql(self, table: str) -> Optional[str]:
        row = self.get("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", [table])
        return None if row is None else row[0]

    def table_exists(self, table: str) -> bool:
        row = self.get(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?", [table]
        )
        return row[0] > 0

    def export_schema(self) -> str:
        """All CREATE statements: tables, then indexes, then the rest."""
        return ";\n".join(row[0] for row in self.values(_SCHEMA_ORDER))

    def get_metadata(self) -> Dict[str, Any]:
        """Table and index counts, page layout and engine version."""
        counts = self.get(
            "SELECT "
            "(SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%') "
            "AS table_count, "
            "(SELECT COUNT(*) FROM sqlite_master WHERE type = 'index' AND name NOT LIKE 'sqlite_%') "
            "AS index_count"
        )
        page_count = self.pragma("page_count")
        page_size = self.pragma("page_size")
        return {
            'table_count': counts['table_count'],
            'index_count': counts['index_count'],
            'page_count': page_count,
            'page_size': page_size,
            'db_size_bytes': page_count * page_size,
            'sqlite_version': apsw.sqlite_lib_version(),
        }

    # ── Extensions ───────────────────────────────────────────────

    def create_function(self, name: str, func: Callable, num_args: int = -1,
                        deterministic: bool = True) -> None:
        """
        Register a scalar SQL function.

        Raises:
            InvalidScopeOperation: If a function with that name was already registered
        """
        self._check_open()
        validate_identifier(name, "Function name")
        key = name.lower()
        if key in self._functions:
            raise InvalidScopeOperation(f"Function '{name}' already exists")
        with engine_errors():
            self._engine.create_scalar_function(name, func, num_args, deterministic=deterministic)
        self._functions[key] = func
        self.logger.debug(f"Registered function '{name}'")

    def create_collation(self, name: str, func: Callable[[str, str], int]) -> None:
        """
        Register a collation.

        Raises:
            InvalidScopeOperation: If a collation with that name was already registered
        """
        self._check_open()
        validate_identifier(name, "Collation name")
        key = name.lower()
        if key in self._collations:
            raise InvalidScopeOperation(f"Collation '{name}' already exists")
        with engine_errors():
            self._engine.create_collation(name, func)
        self._collations[key] = func
        self.logger.debug(f"Registered collation '{name}'")

    @property
    def functions(self) -> List[str]:
        return sorted(self._functions)

    @property
    def collations(self) -> List[str]:
        return sorted(self._collations)

    def load_extension(self, path: str) -> None:
        self._check_open()
        with engine_errors():
            self._engine.enable_load_extension(True)
            self._engine.load_extension(path)

    # ── Migrations ───────────────────────────────────────────────

    def migrate(self, migrations: Sequence[Union[Migration, Dict[str, Any]]],
                target_version: Optional[int] = None) -> int:
        return self.migrations.migrate(migrations, target_version)

    def init_schema(self, sql: str, version: int = 1, description: Optional[str] = None) -> int:
        return self.migrations.init_schema(sql, version, description)

    def get_schema_version(self) -> int:
        return self.migrations.get_schema_version()

    def set_schema_version(self, version: int) -> None:
        self.migrations.set_schema_version(version)

    def get_migration_history(self) -> List[MigrationRecord]:
        return self.migrations.get_migration_history()

    def run_safe(self, sql: str, ignore_errors: Optional[Sequence[str]] = None) -> bool:
        if ignore_errors is None:
            return self.migrations.run_safe(sql)
        return self.migrations.run_safe(sql, ignore_errors)

    def create_table_if_not_exists(self, sql: str) -> bool:
        return self.migrations.create_table_if_not_exists(sql)

    def add_column_if_not_exists(self, table: str, column: str, definition: str) -> bool:
        return self.migrations.add_column_if_not_exists(table, column, definition)

    def __enter__(self) -> 'Connection':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Connection({self._filename!r}, {state})"


def _collapse(names: List[str], rows: List[tuple]) -> Any:
    if not rows:
        return None
    if len(names) <= 1:
        values = [row[0] for row in rows]
        return values[0] if len(values) == 1 else values
    return [dict(zip(names, row)) for row in rows]


def connect(target: Union[str, os.PathLike] = MEMORY, **options) -> Connection:
    """
    Open a database connection.

    Args:
        target: Path to the database file, or ':memory:'
        **options: readonly, create, readwrite, cache_size, busy_timeout

    Returns:
        Connection instance
    """
    return Connection(target, **options)
