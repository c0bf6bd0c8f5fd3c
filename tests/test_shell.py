"""
Tests for yeslite/cli/shell.py
"""

import pytest
import tempfile
import os
from io import StringIO
from unittest.mock import patch
from yeslite.api import Connection
from yeslite.cli.shell import Shell, format_value, main


@pytest.fixture
def temp_db_path():
    """Create a temporary database file path."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield path
    for suffix in ('', '-wal', '-shm', '-journal'):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def test_db(temp_db_path):
    """Create a test database with sample data."""
    db = Connection(temp_db_path)
    db.exec("""
        CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);
        CREATE INDEX idx_users_name ON users (name);
        INSERT INTO users VALUES (1, 'Alice');
        INSERT INTO users VALUES (2, 'Bob');
    """)
    yield db
    db.close()


class TestShellBasics:
    """Test basic shell functionality."""

    def test_create_shell(self, test_db):
        shell = Shell(test_db)
        assert shell.db is test_db
        assert shell.running is True

    def test_welcome_message(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.print_welcome()
            output = fake_out.getvalue()

        assert "yeslite" in output
        assert test_db.filename in output

    def test_help_message(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.print_help()
            output = fake_out.getvalue()

        assert ".tables" in output
        assert ".schema" in output
        assert ".exit" in output

    def test_format_value(self):
        assert format_value(None) == "NULL"
        assert format_value(b"\x01\xff") == "x'01ff'"
        assert format_value(3.5) == "3.5"


class TestSQLExecution:
    """Test SQL execution in shell."""

    def test_execute_select(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            assert shell.execute_sql("SELECT * FROM users ORDER BY id") is True
            output = fake_out.getvalue()

        assert "Alice" in output
        assert "Bob" in output
        assert "(2 rows)" in output

    def test_execute_insert(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.execute_sql("INSERT INTO users (name) VALUES ('Carol')")
            output = fake_out.getvalue()

        assert "OK (1 row changed)" in output
        assert test_db.get("SELECT COUNT(*) AS n FROM users")['n'] == 3

    def test_execute_script(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            assert shell.execute_sql(
                "INSERT INTO users (name) VALUES ('c'); INSERT INTO users (name) VALUES ('d')"
            ) is True
            output = fake_out.getvalue()

        assert "OK (2 rows changed)" in output

    def test_execute_invalid_sql(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            assert shell.execute_sql("INVALID SQL") is False
            output = fake_out.getvalue()

        assert "SQL Error" in output

    def test_execute_missing_table(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            assert shell.execute_sql("SELECT * FROM missing") is False
            output = fake_out.getvalue()

        assert "no such table" in output


class TestSpecialCommands:
    """Test special shell commands."""

    def test_exit_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()):
            shell.handle_special_command('.exit')

        assert shell.running is False

    def test_quit_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()):
            shell.handle_special_command('.quit')

        assert shell.running is False

    def test_tables_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.handle_special_command('.tables')
            output = fake_out.getvalue()

        assert "users" in output

    def test_tables_empty(self):
        with Connection() as db:
            shell = Shell(db)
            with patch('sys.stdout', new=StringIO()) as fake_out:
                shell.handle_special_command('.tables')
                output = fake_out.getvalue()
        assert "(no tables)" in output

    def test_schema_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.handle_special_command('.schema users')
            shell.handle_special_command('.schema missing')
            output = fake_out.getvalue()

        assert "CREATE TABLE users" in output
        assert "No such table: missing" in output

    def test_full_schema(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.handle_special_command('.schema')
            output = fake_out.getvalue()

        assert "CREATE TABLE users" in output
        assert "CREATE INDEX idx_users_name" in output

    def test_indexes_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.handle_special_command('.indexes users')
            shell.handle_special_command('.indexes')
            output = fake_out.getvalue()

        assert "idx_users_name (name)" in output
        assert "Usage: .indexes TABLE" in output

    def test_version_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.handle_special_command('.version')
            output = fake_out.getvalue()

        assert "SQLite" in output

    def test_unknown_command(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.handle_special_command('.unknown')
            output = fake_out.getvalue()

        assert "Unknown command" in output


class TestResultPrinting:
    """Test result printing."""

    def test_print_empty_results(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.print_results(['id'], [])
            output = fake_out.getvalue()

        assert "(no rows)" in output

    def test_print_single_row(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.print_results(['id', 'name'], [[1, 'Alice']])
            output = fake_out.getvalue()

        lines = output.splitlines()
        assert lines[0] == "+----+-------+"
        assert lines[1] == "| id | name  |"
        assert lines[3] == "| 1  | Alice |"
        assert "(1 row)" in output

    def test_print_null_values(self, test_db):
        shell = Shell(test_db)

        with patch('sys.stdout', new=StringIO()) as fake_out:
            shell.print_results(['id', 'name'], [[1, None]])
            output = fake_out.getvalue()

        assert "NULL" in output


class TestMainFunction:
    """Test the main entry point."""

    def test_main_with_command_mode(self, temp_db_path):
        args = [temp_db_path, '-c', 'CREATE TABLE test (id INTEGER)']

        exit_code = main(args)
        assert exit_code == 0

    def test_main_prints_rows(self, temp_db_path):
        main([temp_db_path, '-c', "CREATE TABLE t (a, b); INSERT INTO t VALUES (1, 'x')"])

        with patch('sys.stdout', new=StringIO()) as fake_out:
            exit_code = main([temp_db_path, '-c', 'SELECT a, b FROM t'])
            output = fake_out.getvalue()

        assert exit_code == 0
        assert output.strip() == "1 | x"

    def test_main_with_invalid_command(self, temp_db_path):
        args = [temp_db_path, '-c', 'INVALID SQL']

        with patch('sys.stderr', new=StringIO()):
            exit_code = main(args)
        assert exit_code == 1

    def test_main_readonly(self, temp_db_path, monkeypatch):
        from yeslite.config import settings
        monkeypatch.setattr(settings, "JOURNAL_MODE", "DELETE")
        main([temp_db_path, '-c', 'CREATE TABLE t (a)'])

        with patch('sys.stderr', new=StringIO()) as fake_err:
            exit_code = main([temp_db_path, '--readonly', '-c', 'INSERT INTO t VALUES (1)'])

        assert exit_code == 1
        assert "Error" in fake_err.getvalue()

    def test_main_creates_database(self):
        fd, path = tempfile.mkstemp(suffix='.db')
        os.close(fd)
        os.unlink(path)

        try:
            assert main([path, '-c', 'CREATE TABLE test (id INTEGER)']) == 0
            assert os.path.exists(path)
        finally:
            for suffix in ('', '-wal', '-shm'):
                if os.path.exists(path + suffix):
                    os.unlink(path + suffix)


class TestShellInteraction:
    """Test interactive shell behavior."""

    def test_shell_run_with_exit(self, test_db):
        shell = Shell(test_db)

        with patch('builtins.input', side_effect=['.exit']):
            with patch('sys.stdout', new=StringIO()):
                shell.run()

        assert shell.running is False

    def test_shell_runs_sql(self, test_db):
        shell = Shell(test_db)

        with patch('builtins.input', side_effect=['', 'SELECT name FROM users WHERE id = 2', '.exit']):
            with patch('sys.stdout', new=StringIO()) as fake_out:
                shell.run()
                output = fake_out.getvalue()

        assert "Bob" in output

    def test_shell_handles_keyboard_interrupt(self, test_db):
        shell = Shell(test_db)

        with patch('builtins.input', side_effect=[KeyboardInterrupt(), '.exit']):
            with patch('sys.stdout', new=StringIO()) as fake_out:
                shell.run()
                output = fake_out.getvalue()

        assert "Use .exit to quit" in output

    def test_shell_handles_eof(self, test_db):
        shell = Shell(test_db)

        with patch('builtins.input', side_effect=EOFError()):
            with patch('sys.stdout', new=StringIO()) as fake_out:
                shell.run()
                output = fake_out.getvalue()

        assert "Goodbye!" in output


class TestCommandLineArguments:
    """Test command-line argument parsing."""

    def test_no_arguments_fails(self):
        with pytest.raises(SystemExit):
            main([])

    def test_help_argument(self):
        with pytest.raises(SystemExit) as exc_info:
            with patch('sys.stdout', new=StringIO()):
                main(['--help'])

        assert exc_info.value.code == 0
