"""
Nested transaction scopes.

A connection has at most one top-level Transaction. Nesting is done with
named Savepoints pushed on a stack owned by the connection:

    with db.transaction() as tx:
        tx.run("INSERT INTO t VALUES (1)")
        with tx.savepoint() as sp:
            sp.run("INSERT INTO t VALUES (2)")
            sp.rollback()       # only row 2 is undone

Statement failures inside a scope never roll it back on their own. The
context manager form commits on a clean exit and rolls back when the block
raises; outside a `with` block the caller decides.
"""

import abc
import enum
from typing import TYPE_CHECKING, Any, Optional, Union

from yeslite.errors import InvalidScopeOperation
from yeslite.log import get_logger, log_scope_close, log_scope_open
from yeslite.security import quote_identifier, validate_identifier

if TYPE_CHECKING:
    from yeslite.api import Connection
    from yeslite.statement import RunResult


logger = get_logger("transaction")


class TransactionMode(enum.Enum):
    """Locking behaviour of BEGIN."""
    DEFERRED = "DEFERRED"
    IMMEDIATE = "IMMEDIATE"
    EXCLUSIVE = "EXCLUSIVE"

    @classmethod
    def parse(cls, mode: Union['TransactionMode', str, None]) -> 'TransactionMode':
        """
        Resolve a mode name.

        Unknown names fall back to DEFERRED with a warning.
        """
        if isinstance(mode, cls):
            return mode
        if mode is None:
            return cls.DEFERRED
        try:
            return cls[str(mode).strip().upper()]
        except KeyError:
            logger.warning(f"Unknown transaction mode {mode!r}, using DEFERRED")
            return cls.DEFERRED


class ScopeState(enum.Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Scope(abc.ABC):
    """Common behaviour of Transaction and Savepoint."""

    kind = "scope"

    def __init__(self, connection: 'Connection', name: str, parent: Optional['Scope'] = None):
        self._connection = connection
        self.name = name
        self.parent = parent
        self.state = ScopeState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is ScopeState.ACTIVE

    @property
    def depth(self) -> int:
        return 0 if self.parent is None else self.parent.depth + 1

    def _require_active(self) -> None:
        self._connection._check_open()
        self._connection._reconcile_scopes()
        if not self.is_active:
            raise InvalidScopeOperation(
                f"{self.kind.capitalize()} '{self.name}' is already {self.state.value}"
            )

    def _require_innermost(self, action: str) -> None:
        if self._connection._innermost_scope() is not self:
            raise InvalidScopeOperation(
                f"Cannot {action} {self.kind} '{self.name}' while an inner savepoint is active"
            )

    def _end(self, state: ScopeState) -> None:
        self.state = state
        log_scope_close(self.kind, self.name, state.value.replace('_', ' '))

    def savepoint(self, name: Optional[str] = None) -> 'Savepoint':
        """
        Open a nested savepoint.

        Args:
            name: Savepoint name; generated when omitted

        Raises:
            InvalidScopeOperation: If this scope is not the innermost active one
        """
        self._require_active()
        self._require_innermost("open a savepoint in")
        if name is None:
            name = self._connection._next_savepoint_name()
        validate_identifier(name, "Savepoint name")

        sp = Savepoint(self._connection, name, self)
        self._connection._control(f"SAVEPOINT {quote_identifier(name)}")
        self._connection._scopes.append(sp)
        log_scope_open(sp.kind, name)
        return sp

    def run(self, sql: str, params: Any = None) -> 'RunResult':
        """Execute one statement inside this scope."""
        self._require_active()
        return self._connection.run(sql, params)

    @abc.abstractmethod
    def commit(self) -> None:
        """End the scope, keeping its changes."""

    @abc.abstractmethod
    def rollback(self) -> None:
        """End the scope, discarding its changes."""

    def __enter__(self) -> 'Scope':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if not self.is_active or self._connection.is_closed:
            return False
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, state={self.state.value})"


class Transaction(Scope):
    """Top-level transaction started with BEGIN."""

    kind = "transaction"

    def __init__(self, connection: 'Connection', mode: TransactionMode = TransactionMode.DEFERRED):
        super().__init__(connection, "main")
        self.mode = mode

    def _begin(self) -> None:
        self._connection._control(f"BEGIN {self.mode.value}")
        log_scope_open(self.kind, self.mode.value.lower())

    def commit(self) -> None:
        """
        Commit everything since BEGIN.

        Savepoints still open are committed along with the transaction. If
        the engine refuses the COMMIT the transaction stays active.
        """
        self._require_active()
        self._connection._control("COMMIT")
        self._close_stack(ScopeState.COMMITTED)

    def rollback(self) -> None:
        """Undo everything since BEGIN, including open savepoints."""
        self._require_active()
        if self._connection._engine.in_transaction:
            self._connection._control("ROLLBACK")
        self._close_stack(ScopeState.ROLLED_BACK)

    def _close_stack(self, state: ScopeState) -> None:
        scopes = self._connection._scopes
        while scopes:
            scopes.pop()._end(state)


class Savepoint(Scope):
    """Named nested scope."""

    kind = "savepoint"

    def commit(self) -> None:
        """Release the savepoint; its changes join the parent scope."""
        self._require_active()
        self._require_innermost("commit")
        self._connection._control(f"RELEASE SAVEPOINT {quote_identifier(self.name)}")
        self._connection._scopes.pop()
        self._end(ScopeState.COMMITTED)

    def rollback(self) -> None:
        """Undo changes made since the savepoint; the parent stays active."""
        self._require_active()
        self._require_innermost("roll back")
        quoted = quote_identifier(self.name)
        self._connection._control(f"ROLLBACK TO SAVEPOINT {quoted}")
        self._connection._control(f"RELEASE SAVEPOINT {quoted}")
        self._connection._scopes.pop()
        self._end(ScopeState.ROLLED_BACK)
