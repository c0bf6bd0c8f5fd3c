"""
Prepared statements and the per-connection statement cache.

A Statement wraps one SQL statement. It is validated against the engine
when created (syntax errors surface here) and executed with run(), all(),
get(), values() or iter(). The StatementCache keys statements by their
exact SQL text and evicts the least recently used one once it grows past
its capacity. A statement with a live ResultIterator is never evicted
until that iterator is exhausted, closed or garbage collected.
"""

from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import apsw

from yeslite.errors import (
    SQLSyntaxError,
    engine_errors,
    is_syntax_message,
    translate,
)
from yeslite.log import get_logger, log_cache_evict, log_statement_execute, log_statement_prepare
from yeslite.params import ParameterLayout, is_blank
from yeslite.record import ColumnInfo, Row

if TYPE_CHECKING:
    from yeslite.api import Connection
    from yeslite.cursor import ResultIterator


DEFAULT_CACHE_SIZE = 128


@dataclass(frozen=True, eq=False)
class RunResult:
    """Outcome of executing a statement for its side effect."""
    changes: int
    last_insert_id: int

    def to_dict(self) -> dict:
        return {'changes': self.changes, 'last_insert_id': self.last_insert_id}

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RunResult):
            return self.to_dict() == other.to_dict()
        if isinstance(other, Mapping):
            return self.to_dict() == dict(other)
        return NotImplemented

    __hash__ = None


class Statement:
    """
    A prepared SQL statement.

    Usage:
        stmt = db.prepare('SELECT * FROM users WHERE id = ?')
        row = stmt.get([1])
        for row in stmt.iter([1]):
            ...
    """

    def __init__(self, connection: 'Connection', sql: str):
        """
        Prepare a statement.

        Args:
            connection: Owning connection
            sql: Exactly one SQL statement

        Raises:
            SQLSyntaxError: If the SQL is malformed or holds several statements
        """
        self._connection = connection
        self._sql = sql
        self._exec_sql = sql
        self._layout = ParameterLayout.scan(sql)
        self._columns: Optional[List[ColumnInfo]] = None
        self._readonly: Optional[bool] = None
        self._prepared = False
        self._refs = 0
        self.logger = get_logger("statement")

        log_statement_prepare(sql)
        self._prepare(strict=False)

    # ── Preparation ──────────────────────────────────────────────

    def _prepare(self, strict: bool) -> None:
        """
        Compile the statement without running it.

        The engine compiles, binds NULLs, then calls the exec tracer, which
        records metadata and vetoes execution.

        Args:
            strict: Raise schema errors (missing table/column) instead of
                deferring them to execution
        """
        info: Dict[str, Any] = {}

        def tracer(cursor: apsw.Cursor, first_query: str, bindings) -> bool:
            info['first_query'] = first_query
            info['description'] = cursor.get_description()
            info['readonly'] = cursor.is_readonly
            return False

        cursor = self._connection._engine.cursor()
        cursor.exec_trace = tracer
        try:
            cursor.execute(self._sql, self._layout.null_bindings())
        except apsw.ExecTraceAbort:
            pass
        except apsw.SQLError as exc:
            if is_syntax_message(str(exc)) or strict:
                raise translate(exc) from exc
            self.logger.debug(f"Deferring engine error to execution: {exc}")
            return
        except apsw.Error as exc:
            raise translate(exc) from exc
        finally:
            cursor.exec_trace = None
            cursor.close()

        first_query = info.get('first_query')
        if first_query is not None and not is_blank(self._sql[len(first_query):]):
            raise SQLSyntaxError(
                "Cannot prepare multiple statements at once; use exec() for scripts"
            )

        self._exec_sql = first_query if first_query is not None else self._sql
        self._set_description(info.get('description', ()))
        self._readonly = info.get('readonly', True)
        self._prepared = True

    def _ensure_prepared(self, strict: bool = False) -> None:
        if not self._prepared:
            self._prepare(strict)

    def _set_description(self, description) -> None:
        self._columns = [ColumnInfo(name, decltype) for name, decltype in description]

    def _trace(self, cursor: apsw.Cursor, first_query: str, bindings) -> bool:
        # Column lists can change when the schema does
        self._set_description(cursor.get_description())
        return True

    def _finalize(self) -> None:
        """Drop compiled state; the next use prepares again."""
        self._prepared = False
        self._columns = None
        self._readonly = None

    # ── Execution ────────────────────────────────────────────────

    def _open_cursor(self, bindings) -> apsw.Cursor:
        """Start an execution with already-resolved bindings."""
        self._connection._check_open()
        self._ensure_prepared()
        log_statement_execute(self._sql)

        cursor = self._connection._engine.cursor()
        cursor.exec_trace = self._trace
        try:
            with engine_errors():
                cursor.execute(self._exec_sql, bindings)
        except Exception:
            cursor.close(force=True)
            raise
        return cursor

    def _execute(self, params: Any) -> apsw.Cursor:
        self._connection._check_open()
        return self._open_cursor(self._layout.bind(params))

    def run(self, params: Any = None) -> RunResult:
        """
        Execute for side effect.

        Returns:
            RunResult with the number of changed rows and the last rowid
        """
        engine = self._connection._engine
        before = engine.total_changes()
        cursor = self._execute(params)
        try:
            with engine_errors():
                for _ in cursor:
                    pass
        finally:
            cursor.close(force=True)
        # changes() ignores trigger and cascade writes but is stale after DDL
        changed = engine.changes() if engine.total_changes() != before else 0
        return RunResult(
            changes=changed,
            last_insert_id=engine.last_insert_rowid(),
        )

    def all(self, params: Any = None) -> List[Row]:
        """Execute and return every row."""
        cursor = self._execute(params)
        try:
            names = self.column_names
            with engine_errors():
                return [Row(names, values) for values in cursor]
        finally:
            cursor.close(force=True)

    def get(self, params: Any = None) -> Optional[Row]:
        """Execute and return the first row, or None for an empty result."""
        cursor = self._execute(params)
        try:
            with engine_errors():
                values = next(cursor, None)
            if values is None:
                return None
            return Row(self.column_names, values)
        finally:
            cursor.close(force=True)

    def values(self, params: Any = None) -> List[List[Any]]:
        """Execute and return every row as a bare list of values."""
        cursor = self._execute(params)
        try:
            with engine_errors():
                return [list(values) for values in cursor]
        finally:
            cursor.close(force=True)

    def iter(self, params: Any = None) -> 'ResultIterator':
        """Open a lazy iterator over the result rows."""
        from yeslite.cursor import ResultIterator
        return ResultIterator(self, params)

    __call__ = all

    # ── Metadata ─────────────────────────────────────────────────

    def columns(self) -> List[ColumnInfo]:
        """
        Output columns with their declared types.

        Returns:
            List of ColumnInfo; empty for statements that produce no rows
        """
        self._connection._check_open()
        if self._columns is None:
            self._prepare(strict=True)
        return list(self._columns or [])

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns()]

    def source(self) -> str:
        """The SQL text exactly as it was prepared."""
        return self._sql

    @property
    def param_count(self) -> int:
        return self._layout.count

    @property
    def is_readonly(self) -> bool:
        self._connection._check_open()
        if self._readonly is None:
            self._prepare(strict=True)
        return bool(self._readonly)

    def finalize(self) -> None:
        """Release the compiled statement and drop it from the cache."""
        self._connection.statement_cache.discard(self)
        self._finalize()

    # ── Live references ──────────────────────────────────────────

    @property
    def refs(self) -> int:
        return self._refs

    def _acquire(self) -> None:
        self._refs += 1

    def _release(self) -> None:
        if self._refs > 0:
            self._refs -= 1
        if self._refs == 0 and not self._connection.is_closed:
            self._connection.statement_cache.release(self)

    def __str__(self) -> str:
        return self._sql

    def __repr__(self) -> str:
        return f"Statement({self._sql!r})"


class StatementCache:
    """
    LRU cache of prepared statements keyed by exact SQL text.

    Args:
        connection: Owning connection
        capacity: Maximum number of idle cached statements (0 disables caching)
    """

    def __init__(self, connection: 'Connection', capacity: int = DEFAULT_CACHE_SIZE):
        if capacity < 0:
            raise ValueError("Statement cache capacity cannot be negative")
        self._connection = connection
        self.capacity = capacity
        self._entries: 'OrderedDict[str, Statement]' = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, sql: str) -> Statement:
        """Return the cached statement for sql, preparing it on a miss."""
        stmt = self._entries.get(sql)
        if stmt is not None:
            self._entries.move_to_end(sql)
            self.hits += 1
            return stmt

        self.misses += 1
        stmt = Statement(self._connection, sql)
        if self.capacity > 0:
            self._entries[sql] = stmt
            self._evict()
        return stmt

    def _evict(self) -> None:
        # Statements held by live iterators are skipped until released
        while len(self._entries) > self.capacity:
            victim = next((sql for sql, stmt in self._entries.items() if stmt.refs == 0), None)
            if victim is None:
                break
            stmt = self._entries.pop(victim)
            stmt._finalize()
            self.evictions += 1
            log_cache_evict(victim)

    def release(self, stmt: Statement) -> None:
        """Called when a statement's last live iterator goes away."""
        self._evict()

    def discard(self, stmt: Statement) -> bool:
        """Remove stmt from the cache unless an iterator still uses it."""
        sql = stmt.source()
        if self._entries.get(sql) is stmt and stmt.refs == 0:
            del self._entries[sql]
            return True
        return False

    def clear(self) -> None:
        """Finalize every cached statement."""
        for stmt in self._entries.values():
            stmt._finalize()
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __contains__(self, sql: str) -> bool:
        return sql in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            'size': len(self._entries),
            'capacity': self.capacity,
            'hits': self.hits,
            'misses': self.misses,
            'evictions': self.evictions,
        }
