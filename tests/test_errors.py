"""
Tests for yeslite/errors.py
"""

import apsw
import pytest
from yeslite.api import Connection
from yeslite.errors import (
    BusyOrLocked,
    CannotOpen,
    ConstraintKind,
    ConstraintViolation,
    DatabaseError,
    MissingParameter,
    NoSuchColumn,
    NoSuchTable,
    ParameterCountMismatch,
    ParameterError,
    ReadOnlyDatabase,
    SQLSyntaxError,
    TypeMismatch,
    engine_errors,
    is_syntax_message,
    translate,
)


@pytest.fixture
def db():
    conn = Connection()
    yield conn
    conn.close()


class TestHierarchy:

    def test_all_are_database_errors(self):
        for cls in (SQLSyntaxError, ConstraintViolation, NoSuchTable, NoSuchColumn,
                    TypeMismatch, ParameterCountMismatch, MissingParameter,
                    BusyOrLocked, ReadOnlyDatabase, CannotOpen):
            assert issubclass(cls, DatabaseError)

    def test_builtin_compatibility(self):
        assert issubclass(TypeMismatch, TypeError)
        assert issubclass(MissingParameter, KeyError)
        assert issubclass(MissingParameter, ParameterError)

    def test_engine_code(self):
        err = DatabaseError("boom", 5)
        assert err.engine_code == 5
        assert str(err) == "boom"


class TestTranslate:
    """Test mapping of engine exceptions."""

    def test_syntax_messages(self):
        assert is_syntax_message('near "SELCT": syntax error')
        assert is_syntax_message("incomplete input")
        assert not is_syntax_message("no such table: users")

    def test_passthrough(self):
        err = NoSuchTable("no such table: x")
        assert translate(err) is err

    def test_sql_errors(self):
        assert isinstance(translate(apsw.SQLError("no such table: t")), NoSuchTable)
        assert isinstance(translate(apsw.SQLError("no such column: c")), NoSuchColumn)
        assert isinstance(translate(apsw.SQLError("near \"x\": syntax error")), SQLSyntaxError)
        generic = translate(apsw.SQLError("something else"))
        assert type(generic) is DatabaseError

    def test_engine_classes(self):
        assert isinstance(translate(apsw.BusyError("database is locked")), BusyOrLocked)
        assert isinstance(translate(apsw.ReadOnlyError("readonly")), ReadOnlyDatabase)
        assert isinstance(translate(apsw.CantOpenError("unable to open")), CannotOpen)
        assert isinstance(translate(apsw.MismatchError("datatype mismatch")), TypeMismatch)
        assert isinstance(translate(OverflowError("too big")), TypeMismatch)

    def test_constraint_from_message(self):
        err = translate(apsw.ConstraintError("NOT NULL constraint failed: t.x"))
        assert isinstance(err, ConstraintViolation)
        assert err.kind == ConstraintKind.NOT_NULL

    def test_engine_errors_chains(self):
        with pytest.raises(NoSuchTable) as excinfo:
            with engine_errors():
                raise apsw.SQLError("no such table: t")
        assert isinstance(excinfo.value.__cause__, apsw.SQLError)

    def test_engine_errors_ignores_other_exceptions(self):
        with pytest.raises(KeyError):
            with engine_errors():
                raise KeyError("x")


class TestFromEngine:
    """Errors raised by real statements carry the right kind."""

    def test_constraint_kinds(self, db):
        db.exec("""
            CREATE TABLE p (id INTEGER PRIMARY KEY);
            CREATE TABLE c (
                id INTEGER PRIMARY KEY,
                code TEXT UNIQUE,
                name TEXT NOT NULL,
                qty INTEGER CHECK (qty >= 0),
                p_id INTEGER REFERENCES p(id)
            );
        """)
        db.run("INSERT INTO c (id, code, name, qty) VALUES (1, 'a', 'x', 1)")
        cases = [
            ("INSERT INTO c (id, name) VALUES (1, 'y')", ConstraintKind.PRIMARY_KEY),
            ("INSERT INTO c (code, name) VALUES ('a', 'y')", ConstraintKind.UNIQUE),
            ("INSERT INTO c (code) VALUES ('b')", ConstraintKind.NOT_NULL),
            ("INSERT INTO c (name, qty) VALUES ('y', -1)", ConstraintKind.CHECK),
            ("INSERT INTO c (name, p_id) VALUES ('y', 42)", ConstraintKind.FOREIGN_KEY),
        ]
        for sql, kind in cases:
            with pytest.raises(ConstraintViolation) as excinfo:
                db.run(sql)
            assert excinfo.value.kind == kind, sql
            assert excinfo.value.engine_code is not None

    def test_schema_errors(self, db):
        db.run("CREATE TABLE t (x)")
        with pytest.raises(NoSuchTable):
            db.all("SELECT * FROM missing")
        with pytest.raises(NoSuchColumn):
            db.all("SELECT nope FROM t")

    def test_syntax_error(self, db):
        with pytest.raises(SQLSyntaxError):
            db.prepare("SELEC 1")
