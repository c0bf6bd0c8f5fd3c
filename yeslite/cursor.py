"""
Lazy, resettable iteration over a statement's result rows.
"""

import enum
import weakref
from typing import TYPE_CHECKING, Any, List, Optional

from yeslite.errors import engine_errors
from yeslite.record import Row

if TYPE_CHECKING:
    from yeslite.statement import Statement


class IteratorState(enum.Enum):
    NOT_STARTED = "not_started"
    POSITIONED = "positioned"
    EXHAUSTED = "exhausted"


class ResultIterator:
    """
    Cursor over the rows of one statement execution.

    Parameters are bound once when the iterator is created; reset() runs
    the statement again with the same values. The statement stays out of
    cache eviction while the iterator is live.

    Usage:
        with stmt.iter([18]) as it:
            while it.has_more():
                row = it.next()
    """

    def __init__(self, statement: 'Statement', params: Any = None):
        self._statement = statement
        self._bindings = statement._layout.bind(params)
        self._cursor = None
        self._pending = None
        self._has_pending = False
        self._finalizer = None
        self.state = IteratorState.NOT_STARTED

        statement._connection._register_iterator(self)
        self._start()

    def _start(self) -> None:
        self._close_cursor()
        if self._finalizer is None or not self._finalizer.alive:
            self._statement._acquire()
            self._finalizer = weakref.finalize(self, self._statement._release)
        self._cursor = self._statement._open_cursor(self._bindings)
        self.state = IteratorState.NOT_STARTED

    def _close_cursor(self) -> None:
        self._pending = None
        self._has_pending = False
        if self._cursor is not None:
            cursor, self._cursor = self._cursor, None
            with engine_errors():
                cursor.close(force=True)

    def _finish(self) -> None:
        self._close_cursor()
        self.state = IteratorState.EXHAUSTED
        if self._finalizer is not None:
            self._finalizer()

    def _peek(self) -> bool:
        """Buffer the next row if there is one."""
        if self._has_pending:
            return True
        if self.state is IteratorState.EXHAUSTED or self._cursor is None:
            return False
        try:
            with engine_errors():
                values = next(self._cursor, None)
        except Exception:
            self._finish()
            raise
        if values is None:
            self._finish()
            return False
        self._pending = values
        self._has_pending = True
        return True

    def _advance(self) -> Optional[tuple]:
        self._statement._connection._check_open()
        if not self._peek():
            return None
        values = self._pending
        self._pending = None
        self._has_pending = False
        self.state = IteratorState.POSITIONED
        return values

    # ── Public API ───────────────────────────────────────────────

    def has_more(self) -> bool:
        """Whether next() would return a row. Does not consume one."""
        self._statement._connection._check_open()
        return self._peek()

    def next(self) -> Optional[Row]:
        """Return the next row, or None once exhausted."""
        values = self._advance()
        if values is None:
            return None
        return Row(self._statement.column_names, values)

    def next_values(self) -> Optional[List[Any]]:
        """Return the next row as a bare list of values, or None once exhausted."""
        values = self._advance()
        if values is None:
            return None
        return list(values)

    def all(self) -> List[Row]:
        """Drain the remaining rows."""
        rows = []
        while True:
            row = self.next()
            if row is None:
                return rows
            rows.append(row)

    def reset(self) -> None:
        """Run the statement again with the original parameters."""
        self._statement._connection._check_open()
        self._start()

    def close(self) -> None:
        """Stop iterating and release the statement."""
        self._finish()

    @property
    def statement(self) -> 'Statement':
        return self._statement

    @property
    def columns(self) -> List[str]:
        return self._statement.column_names

    def __iter__(self) -> 'ResultIterator':
        return self

    def __next__(self) -> Row:
        row = self.next()
        if row is None:
            raise StopIteration
        return row

    def __enter__(self) -> 'ResultIterator':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ResultIterator({self._statement.source()!r}, state={self.state.value})"
