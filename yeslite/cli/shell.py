"""
Interactive shell for yeslite.
Provides a command-line interface for database interaction.
"""

import sys
import argparse
from typing import Any, List, Optional, Sequence

import apsw

from yeslite.api import Connection
from yeslite.errors import DatabaseError, SQLSyntaxError
from yeslite.log import get_logger


logger = get_logger("cli")


def format_value(value: Any) -> str:
    if value is None:
        return 'NULL'
    if isinstance(value, bytes):
        return f"x'{value.hex()}'"
    return str(value)


class Shell:
    """
    Interactive database shell.

    Supports SQL commands and special shell commands.
    """

    def __init__(self, database: Connection):
        """
        Initialize the shell.

        Args:
            database: The database connection
        """
        self.db = database
        self.running = True

    def run(self) -> None:
        """Run the interactive shell."""
        self.print_welcome()

        while self.running:
            try:
                line = input('yeslite> ')
                line = line.strip()

                if not line:
                    continue

                if line.startswith('.'):
                    self.handle_special_command(line)
                else:
                    self.execute_sql(line)

            except KeyboardInterrupt:
                print("\nUse .exit to quit")
                continue

            except EOFError:
                print("\nGoodbye!")
                break

    def print_welcome(self) -> None:
        """Print welcome message."""
        print(f"yeslite - SQLite {apsw.sqlite_lib_version()} ({self.db.filename})")
        print("Enter SQL statements or .help for commands")
        print()

    def execute_sql(self, sql: str) -> bool:
        """
        Execute SQL and print its result.

        Args:
            sql: One statement, or a script of several

        Returns:
            True on success
        """
        try:
            try:
                stmt = self.db.prepare(sql)
            except SQLSyntaxError as e:
                if "multiple statements" not in str(e):
                    raise
                result = self.db.exec(sql)
                print(f"OK ({result.changes} row{'s' if result.changes != 1 else ''} changed)")
                return True

            columns = stmt.column_names
            if columns:
                self.print_results(columns, stmt.values())
            else:
                result = stmt.run()
                print(f"OK ({result.changes} row{'s' if result.changes != 1 else ''} changed)")
            return True

        except (DatabaseError, ValueError) as e:
            logger.debug(f"Shell statement failed: {e}")
            print(f"SQL Error: {e}")
            return False

    def print_results(self, columns: Sequence[str], rows: List[List[Any]]) -> None:
        """
        Print query results in a formatted table.

        Args:
            columns: Column names
            rows: Result rows as value lists
        """
        if not rows:
            print("(no rows)")
            return

        rows_data = [[format_value(v) for v in row] for row in rows]

        col_widths = [len(name) for name in columns]
        for row in rows_data:
            for i, val in enumerate(row):
                col_widths[i] = max(col_widths[i], len(val))

        separator = '+' + '+'.join('-' * (w + 2) for w in col_widths) + '+'
        print(separator)
        print('| ' + ' | '.join(name.ljust(col_widths[i]) for i, name in enumerate(columns)) + ' |')
        print(separator)

        for row in rows_data:
            print('| ' + ' | '.join(val.ljust(col_widths[i]) for i, val in enumerate(row)) + ' |')

        print(separator)
        print(f"({len(rows)} row{'s' if len(rows) != 1 else ''})")

    def handle_special_command(self, command: str) -> None:
        """
        Handle special shell commands (starting with .).

        Args:
            command: The special command
        """
        parts = command.split()
        name = parts[0].lower()
        args = parts[1:]

        try:
            if name == '.exit' or name == '.quit':
                self.running = False
                print("Goodbye!")

            elif name == '.help':
                self.print_help()

            elif name == '.tables':
                self.show_tables()

            elif name == '.schema':
                self.show_schema(args[0] if args else None)

            elif name == '.indexes':
                if not args:
                    print("Usage: .indexes TABLE")
                else:
                    self.show_indexes(args[0])

            elif name == '.version':
                print(f"SQLite {apsw.sqlite_lib_version()}, apsw {apsw.apsw_version()}")

            else:
                print(f"Unknown command: {name}")
                print("Type .help for list of commands")

        except DatabaseError as e:
            print(f"Error: {e}")

    def print_help(self) -> None:
        """Print help message."""
        print("Special commands:")
        print("  .help            Show this help message")
        print("  .tables          List all tables")
        print("  .schema [TABLE]  Show CREATE statements")
        print("  .indexes TABLE   List indexes of a table")
        print("  .version         Show engine version")
        print("  .exit            Exit the shell")
        print("  .quit            Exit the shell")
        print()
        print("Enter SQL statements to execute them")

    def show_tables(self) -> None:
        """Show all tables in the database."""
        tables = self.db.get_tables()

        if not tables:
            print("(no tables)")
        else:
            for table in tables:
                print(table)

    def show_schema(self, table: Optional[str] = None) -> None:
        """Show the CREATE statement of one table, or the whole schema."""
        if table is None:
            schema = self.db.export_schema()
            print(schema + ";" if schema else "(no tables)")
            return

        sql = self.db.get_table_sql(table)
        if sql is None:
            print(f"No such table: {table}")
        else:
            print(sql + ";")

    def show_indexes(self, table: str) -> None:
        """Show the indexes of a table."""
        indexes = self.db.get_indexes(table)

        if not indexes:
            print("(no indexes)")
        for idx in indexes:
            unique = " UNIQUE" if idx['unique'] else ""
            print(f"{idx['name']}{unique} ({', '.join(idx['columns'])})")


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the shell.

    Args:
        args: Command-line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        description='yeslite - interactive SQLite shell',
        prog='yeslite'
    )
    parser.add_argument(
        'database',
        help='Database file to open or create (":memory:" for a scratch database)'
    )
    parser.add_argument(
        '-c', '--command',
        help='Execute SQL and exit',
        metavar='SQL'
    )
    parser.add_argument(
        '--readonly',
        action='store_true',
        help='Open the database read-only'
    )

    if args is None:
        args = sys.argv[1:]

    parsed_args = parser.parse_args(args)

    try:
        db = Connection(parsed_args.database, readonly=parsed_args.readonly)
    except DatabaseError as e:
        print(f"Error opening database: {e}", file=sys.stderr)
        return 1

    try:
        if parsed_args.command:
            try:
                stmt = db.prepare(parsed_args.command)
                if stmt.column_names:
                    for row in stmt.values():
                        print(' | '.join(format_value(v) for v in row))
                else:
                    stmt.run()
                return 0
            except SQLSyntaxError as e:
                if "multiple statements" not in str(e):
                    print(f"Error: {e}", file=sys.stderr)
                    return 1
                try:
                    db.exec(parsed_args.command)
                except DatabaseError as e:
                    print(f"Error: {e}", file=sys.stderr)
                    return 1
                return 0
            except DatabaseError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1

        else:
            shell = Shell(db)
            shell.run()
            return 0

    finally:
        db.close()


if __name__ == '__main__':
    sys.exit(main())
