"""
Tests for yeslite/cursor.py
"""

import pytest
from yeslite.api import Connection
from yeslite.cursor import IteratorState, ResultIterator
from yeslite.errors import ConnectionClosed, NoSuchTable, ParameterCountMismatch


@pytest.fixture
def db():
    """In-memory database with three numbered rows."""
    conn = Connection(":memory:")
    conn.exec("""
        CREATE TABLE nums (n INTEGER, label TEXT);
        INSERT INTO nums VALUES (1, 'one'), (2, 'two'), (3, 'three');
    """)
    yield conn
    conn.close()


class TestIteration:
    """Test the iterator state machine."""

    def test_initial_state(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n")
        assert isinstance(it, ResultIterator)
        assert it.state == IteratorState.NOT_STARTED

    def test_next_walks_rows(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n")
        assert it.next()["n"] == 1
        assert it.state == IteratorState.POSITIONED
        assert it.next()["n"] == 2
        assert it.next()["n"] == 3
        assert it.next() is None
        assert it.state == IteratorState.EXHAUSTED
        assert it.next() is None

    def test_next_values(self, db):
        it = db.iter("SELECT n, label FROM nums ORDER BY n")
        assert it.next_values() == [1, "one"]

    def test_has_more_is_idempotent(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n")
        assert it.has_more()
        assert it.has_more()
        assert it.state == IteratorState.NOT_STARTED
        assert it.next()["n"] == 1

    def test_has_more_at_end(self, db):
        it = db.iter("SELECT n FROM nums WHERE n = 1")
        it.next()
        assert not it.has_more()
        assert not it.has_more()

    def test_empty_result(self, db):
        it = db.iter("SELECT n FROM nums WHERE n > 10")
        assert not it.has_more()
        assert it.all() == []

    def test_all_returns_remainder(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n")
        it.next()
        assert [r["n"] for r in it.all()] == [2, 3]
        assert it.state == IteratorState.EXHAUSTED

    def test_python_iteration(self, db):
        assert [row["n"] for row in db.iter("SELECT n FROM nums ORDER BY n")] == [1, 2, 3]

    def test_bound_parameters(self, db):
        it = db.prepare("SELECT n FROM nums WHERE n >= ? ORDER BY n").iter([2])
        assert [r["n"] for r in it] == [2, 3]

    def test_named_parameters(self, db):
        it = db.iter("SELECT label FROM nums WHERE n = :n", {"n": 3})
        assert it.next()["label"] == "three"

    def test_parameter_errors_raise_on_creation(self, db):
        with pytest.raises(ParameterCountMismatch):
            db.iter("SELECT n FROM nums WHERE n = ?")

    def test_engine_errors_raise_on_creation(self, db):
        with pytest.raises(NoSuchTable):
            db.iter("SELECT * FROM missing")

    def test_independent_iterators(self, db):
        stmt = db.prepare("SELECT n FROM nums ORDER BY n")
        first = stmt.iter()
        second = stmt.iter()
        assert first.next()["n"] == 1
        assert first.next()["n"] == 2
        assert second.next()["n"] == 1


class TestReset:
    """Test re-execution."""

    def test_reset_from_exhausted(self, db):
        it = db.iter("SELECT n FROM nums WHERE n > ? ORDER BY n", [1])
        assert len(it.all()) == 2
        it.reset()
        assert it.state == IteratorState.NOT_STARTED
        assert [r["n"] for r in it.all()] == [2, 3]

    def test_reset_midway(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n")
        it.next()
        it.next()
        it.reset()
        assert it.next()["n"] == 1

    def test_reset_sees_new_rows(self, db):
        it = db.iter("SELECT count(*) AS c FROM nums")
        assert it.next()["c"] == 3
        db.run("INSERT INTO nums VALUES (4, 'four')")
        it.reset()
        assert it.next()["c"] == 4

    def test_reset_after_close(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n")
        it.close()
        assert it.next() is None
        it.reset()
        assert it.next()["n"] == 1


class TestLifetime:
    """Test closing and connection lifetime."""

    def test_context_manager_closes(self, db):
        with db.iter("SELECT n FROM nums") as it:
            it.next()
        assert it.state == IteratorState.EXHAUSTED
        assert it.statement.refs == 0

    def test_connection_close_invalidates(self, db):
        it = db.iter("SELECT n FROM nums")
        db.close()
        with pytest.raises(ConnectionClosed):
            it.next()
        with pytest.raises(ConnectionClosed):
            it.has_more()
        with pytest.raises(ConnectionClosed):
            it.reset()

    def test_columns(self, db):
        it = db.iter("SELECT n, label FROM nums")
        assert it.columns == ["n", "label"]

    def test_close_partly_read_with_trailing_comment(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n; -- tail")
        assert it.next()["n"] == 1
        it.close()
        assert it.state == IteratorState.EXHAUSTED
        assert it.statement.refs == 0

    def test_connection_close_with_partly_read_iterator(self, db):
        it = db.iter("SELECT n FROM nums ORDER BY n; -- tail")
        it.next()
        db.close()
        assert db.is_closed
        assert it.state == IteratorState.EXHAUSTED
        assert len(db.statement_cache) == 0
        db.close()
