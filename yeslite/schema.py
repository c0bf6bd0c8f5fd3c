"""
Declarative schema builder for yeslite.

Tables are described with a fluent builder, frozen into an immutable
TableSchema, then turned into DDL or migrations.

Example usage:
    from yeslite.schema import SchemaSet

    schema = SchemaSet()
    schema.create("users", lambda t: (
        t.integer("id").primary_key().auto_increment()
         .text("email").not_null().unique()
         .text("created_at").default("CURRENT_TIMESTAMP")
    ))
    schema.create("posts", lambda t: (
        t.integer("id").primary_key()
         .integer("user_id").references("users", "id")
         .text("title").not_null()
         .index(["user_id"])
    ))

    db.migrate(schema.to_migrations())
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from yeslite.migration import Migration
from yeslite.security import quote_literal, validate_identifier


# ── Type aliases ─────────────────────────────────────────────────

Integer = "INTEGER"
Text = "TEXT"
Real = "REAL"
Blob = "BLOB"

# Aliases for convenience; stored as REAL and INTEGER
Float = "REAL"
Boolean = "INTEGER"

VALID_TYPES = {"INTEGER", "TEXT", "REAL", "BLOB"}

_FUNCTION_CALL = re.compile(r'^[a-z_]+\s*\(', re.IGNORECASE)
_SQL_KEYWORD = re.compile(r'^(CURRENT_TIMESTAMP|CURRENT_DATE|CURRENT_TIME|NULL)$', re.IGNORECASE)


def is_sql_expression(value: str) -> bool:
    """
    Check if a default value is an SQL expression rather than a text literal.

    Examples: datetime('now'), CURRENT_TIMESTAMP, (strftime('%s', 'now'))
    """
    return value.startswith("(") or bool(_FUNCTION_CALL.match(value)) or bool(_SQL_KEYWORD.match(value))


def format_default(value: Any) -> str:
    """Render a DEFAULT clause value."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        if is_sql_expression(value):
            return value if value.startswith("(") else f"({value})"
        return quote_literal(value)
    raise ValueError(f"Unsupported default value type: {type(value).__name__}")


# ── Column ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ColumnSpec:
    """
    A column in a table definition.

    Args:
        name: Column name.
        type_: Column type (use Integer, Text, Real, or Blob).
        primary_key: Whether this column is the primary key.
    """
    name: str
    type_: str
    primary_key: bool = False
    auto_increment: bool = False
    not_null: bool = False
    unique: bool = False
    has_default: bool = False
    default: Any = None
    references: Optional[Tuple[str, str]] = None

    def __post_init__(self):
        validate_identifier(self.name, "Column name")
        if self.type_ not in VALID_TYPES:
            raise ValueError(
                f"Invalid column type '{self.type_}'. Must be one of: {', '.join(sorted(VALID_TYPES))}"
            )
        if self.auto_increment and not (self.primary_key and self.type_ == Integer):
            raise ValueError(f"Column '{self.name}': auto_increment requires an INTEGER primary key")

    def to_sql(self) -> str:
        if self.primary_key and self.auto_increment:
            return f"{self.name} INTEGER PRIMARY KEY AUTOINCREMENT"

        parts = [self.name, self.type_]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.not_null and not self.primary_key:
            parts.append("NOT NULL")
        if self.unique:
            parts.append("UNIQUE")
        if self.has_default:
            parts.append(f"DEFAULT {format_default(self.default)}")
        if self.references:
            table, column = self.references
            parts.append(f"REFERENCES {table}({column})")
        return " ".join(parts)


@dataclass(frozen=True)
class IndexSpec:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False

    def to_sql(self, table: str) -> str:
        unique = " UNIQUE" if self.unique else ""
        return f"CREATE{unique} INDEX {self.name} ON {table} ({', '.join(self.columns)})"


# ── Table ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TableSchema:
    """Immutable table definition produced by TableBuilder.build()."""
    name: str
    columns: Tuple[ColumnSpec, ...]
    indexes: Tuple[IndexSpec, ...] = field(default_factory=tuple)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def statements(self) -> List[str]:
        """CREATE TABLE followed by one CREATE INDEX per index."""
        columns_sql = ",\n".join(f"  {col.to_sql()}" for col in self.columns)
        create = f"CREATE TABLE {self.name} (\n{columns_sql}\n)"
        return [create] + [idx.to_sql(self.name) for idx in self.indexes]

    def to_sql(self) -> str:
        """
        Generate the DDL for this table.

        Returns:
            SQL script like: CREATE TABLE users (\\n  id INTEGER PRIMARY KEY\\n)
        """
        return ";\n".join(self.statements())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table_name': self.name,
            'columns': [
                {
                    'name': col.name,
                    'type': col.type_,
                    'primary_key': col.primary_key,
                    'auto_increment': col.auto_increment,
                    'unique': col.unique,
                    'not_null': col.not_null,
                    'default': col.default if col.has_default else None,
                    'references': list(col.references) if col.references else None,
                }
                for col in self.columns
            ],
            'indexes': [
                {'name': idx.name, 'columns': list(idx.columns), 'unique': idx.unique}
                for idx in self.indexes
            ],
        }


class TableBuilder:
    """
    Fluent, mutable table description.

    Type methods add a column; modifier methods apply to the most recently
    added column.

    Args:
        name: Table name.
    """

    def __init__(self, name: str):
        self.name = validate_identifier(name, "Table name")
        self._columns: List[Dict[str, Any]] = []
        self._indexes: List[IndexSpec] = []

    def _add(self, name: str, type_: str) -> 'TableBuilder':
        validate_identifier(name, "Column name")
        if any(col['name'].lower() == name.lower() for col in self._columns):
            raise ValueError(f"Duplicate column '{name}' in table '{self.name}'")
        self._columns.append({'name': name, 'type_': type_})
        return self

    def _modify(self, **changes) -> 'TableBuilder':
        if not self._columns:
            raise ValueError("Add a column before applying a modifier")
        self._columns[-1].update(changes)
        return self

    # Column types

    def integer(self, name: str) -> 'TableBuilder':
        return self._add(name, Integer)

    def text(self, name: str) -> 'TableBuilder':
        return self._add(name, Text)

    def real(self, name: str) -> 'TableBuilder':
        return self._add(name, Real)

    def blob(self, name: str) -> 'TableBuilder':
        return self._add(name, Blob)

    def boolean(self, name: str) -> 'TableBuilder':
        return self._add(name, Boolean)

    # Modifiers

    def primary_key(self) -> 'TableBuilder':
        return self._modify(primary_key=True)

    def auto_increment(self) -> 'TableBuilder':
        return self._modify(auto_increment=True)

    def not_null(self) -> 'TableBuilder':
        return self._modify(not_null=True)

    def unique(self) -> 'TableBuilder':
        return self._modify(unique=True)

    def default(self, value: Any) -> 'TableBuilder':
        format_default(value)
        return self._modify(has_default=True, default=value)

    def references(self, table: str, column: str) -> 'TableBuilder':
        validate_identifier(table, "Table name")
        validate_identifier(column, "Column name")
        return self._modify(references=(table, column))

    def index(self, columns: Sequence[str], unique: bool = False) -> 'TableBuilder':
        """Add an index named idx_<table>_<columns>."""
        columns = tuple(columns)
        if not columns:
            raise ValueError("Index must have at least one column")
        for column in columns:
            validate_identifier(column, "Column name")
        name = f"idx_{self.name}_{'_'.join(columns)}"
        self._indexes.append(IndexSpec(name, columns, unique))
        return self

    def build(self) -> TableSchema:
        """
        Freeze the description.

        Raises:
            ValueError: If the table has no columns or an index names an unknown column
        """
        if not self._columns:
            raise ValueError("Table must have at least one column")
        columns = tuple(ColumnSpec(**col) for col in self._columns)
        known = {col.name.lower() for col in columns}
        for idx in self._indexes:
            missing = [c for c in idx.columns if c.lower() not in known]
            if missing:
                raise ValueError(f"Index {idx.name} references unknown column(s): {', '.join(missing)}")
        return TableSchema(self.name, columns, tuple(self._indexes))


# ── Schema sets ──────────────────────────────────────────────────


class SchemaSet:
    """Ordered collection of tables."""

    def __init__(self):
        self._tables: List[TableSchema] = []

    def create(self, name: str, define: Callable[[TableBuilder], Any]) -> 'SchemaSet':
        """
        Describe a table.

        Args:
            name: Table name.
            define: Called with a TableBuilder to add columns and indexes.
        """
        if self.get(name) is not None:
            raise ValueError(f"Table '{name}' is already defined")
        builder = TableBuilder(name)
        define(builder)
        self._tables.append(builder.build())
        return self

    def add(self, table: TableSchema) -> 'SchemaSet':
        if self.get(table.name) is not None:
            raise ValueError(f"Table '{table.name}' is already defined")
        self._tables.append(table)
        return self

    @property
    def tables(self) -> List[TableSchema]:
        return list(self._tables)

    def get(self, name: str) -> Optional[TableSchema]:
        for table in self._tables:
            if table.name.lower() == name.lower():
                return table
        return None

    def to_sql(self) -> List[str]:
        return [table.to_sql() for table in self._tables]

    def to_migrations(self, start_version: int = 1) -> List[Migration]:
        """One migration per table, numbered from start_version."""
        return [
            Migration(start_version + i, table.to_sql(), f"create table {table.name}")
            for i, table in enumerate(self._tables)
        ]
