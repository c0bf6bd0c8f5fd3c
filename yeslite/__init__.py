"""
yeslite - an embedded SQLite access layer.

Prepared statements with an LRU statement cache, positional and named
parameter binding, lazy result iteration, nested transactions built on
savepoints, and version-tracked schema migrations.
"""

from yeslite.api import Connection, connect
from yeslite.cursor import IteratorState, ResultIterator
from yeslite.errors import (
    BusyOrLocked,
    CannotOpen,
    ConnectionClosed,
    ConstraintKind,
    ConstraintViolation,
    DatabaseError,
    InvalidScopeOperation,
    MigrationFailed,
    MissingParameter,
    NoSuchColumn,
    NoSuchTable,
    ParameterCountMismatch,
    ParameterError,
    ReadOnlyDatabase,
    ResourceLimitError,
    SecurityError,
    SQLSyntaxError,
    TypeMismatch,
)
from yeslite.migration import Migration, MigrationRecord
from yeslite.record import ColumnInfo, DataType, Row
from yeslite.schema import SchemaSet, TableBuilder, TableSchema, Integer, Text, Real, Float, Blob, Boolean
from yeslite.security import PathTraversalError
from yeslite.statement import RunResult, Statement
from yeslite.transaction import Savepoint, ScopeState, Transaction, TransactionMode

__version__ = '0.2.0'
__author__ = 'Azhar'
__license__ = 'MIT'

__all__ = [
    'Connection',
    'connect',
    'Statement',
    'RunResult',
    'ResultIterator',
    'IteratorState',
    'Row',
    'ColumnInfo',
    'DataType',
    'Transaction',
    'Savepoint',
    'TransactionMode',
    'ScopeState',
    'Migration',
    'MigrationRecord',
    'SchemaSet',
    'TableBuilder',
    'TableSchema',
    'Integer',
    'Text',
    'Real',
    'Float',
    'Blob',
    'Boolean',
    'DatabaseError',
    'SQLSyntaxError',
    'ConstraintKind',
    'ConstraintViolation',
    'NoSuchTable',
    'NoSuchColumn',
    'TypeMismatch',
    'ParameterError',
    'ParameterCountMismatch',
    'MissingParameter',
    'BusyOrLocked',
    'ReadOnlyDatabase',
    'CannotOpen',
    'ConnectionClosed',
    'InvalidScopeOperation',
    'MigrationFailed',
    'SecurityError',
    'PathTraversalError',
    'ResourceLimitError',
]
