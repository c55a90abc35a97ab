"""Database connection wrappers.

This module wraps the two database drivers the sync engine talks to:
- SQLiteConnection: the local target catalog store (and pre-staged source tables)
- MSSQLConnection: the ERP source database, read-only, via pyodbc

Both expose ``fetch_all(sql, params)`` returning rows as dicts; driver errors
are re-raised as ``DatabaseError`` carrying the failing SQL.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import sqlparse

from catalogsync.exceptions import DatabaseError

logger = logging.getLogger(__name__)


def quote_identifier(identifier: str) -> str:
    """Quote with double quotes per dotted segment, doubling embedded quotes."""
    quoted = []
    for part in str(identifier).split("."):
        part = part.strip()
        if part == "*":
            quoted.append("*")
            continue
        quoted.append('"' + part.replace('"', '""') + '"')
    return ".".join(quoted)


def quote_bracket(identifier: str) -> str:
    """Quote with square brackets per dotted segment, doubling ``]``."""
    quoted = []
    for part in str(identifier).split("."):
        part = part.strip()
        if part == "*":
            quoted.append("*")
            continue
        quoted.append("[" + part.replace("]", "]]") + "]")
    return ".".join(quoted)


class SQLiteConnection:
    """SQLite connection with dict rows and explicit transaction control."""

    PRAGMAS = (
        "PRAGMA foreign_keys = ON",
        "PRAGMA synchronous = NORMAL",
        "PRAGMA temp_store = MEMORY",
    )

    def __init__(self, path: str = ":memory:", query_timeout: float = 30.0):
        """
        Open the database.

        Args:
            path: Database file path (``:memory:`` for an in-memory store)
            query_timeout: Busy timeout in seconds
        """
        self.path = str(path)
        self.query_timeout = query_timeout
        try:
            self.conn = sqlite3.connect(self.path, timeout=query_timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise DatabaseError(f"Could not open SQLite database {self.path}: {e}") from e

        self.conn.row_factory = sqlite3.Row
        for pragma in self.PRAGMAS:
            self.conn.execute(pragma)
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Optional[Any] = None) -> sqlite3.Cursor:
        """Execute one statement and return the cursor."""
        try:
            return self.conn.execute(sql, params if params is not None else ())
        except sqlite3.Error as e:
            raise DatabaseError(str(e), sql) from e

    def fetch_all(self, sql: str, params: Optional[Any] = None) -> List[Dict[str, Any]]:
        """Execute a query and return all rows as dicts."""
        cursor = self.query(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def fetch_value(self, sql: str, params: Optional[Any] = None, default: Any = None) -> Any:
        """First column of the first row, or ``default``."""
        row = self.query(sql, params).fetchone()
        if row is None:
            return default
        return row[0]

    def execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> int:
        try:
            cursor = self.conn.executemany(sql, rows)
        except sqlite3.Error as e:
            raise DatabaseError(str(e), sql) from e
        return cursor.rowcount

    def execute_script(self, script: str) -> int:
        """
        Execute a multi-statement DDL script.

        Statements are split with sqlparse and run one by one so a failing
        statement is reported on its own.

        Returns:
            Number of statements executed
        """
        count = 0
        for statement in sqlparse.split(script):
            statement = statement.strip()
            if not statement:
                continue
            self.query(statement)
            count += 1
        logger.info(f"Executed {count} statements on {self.path}")
        return count

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self.conn.in_transaction

    def begin(self) -> None:
        self.query("BEGIN")

    def commit(self) -> None:
        if self.conn.in_transaction:
            self.query("COMMIT")

    def rollback(self) -> None:
        if self.conn.in_transaction:
            self.query("ROLLBACK")

    @contextmanager
    def transaction(self) -> Iterator["SQLiteConnection"]:
        """Run the block in one transaction; roll back and re-raise on error."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def table_exists(self, table: str) -> bool:
        row = self.query(
            "SELECT name FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?",
            (table,),
        ).fetchone()
        return row is not None

    def table_columns(self, table: str) -> List[str]:
        """Column names of a table in declaration order ([] if missing)."""
        rows = self.fetch_all(f"PRAGMA table_info({quote_identifier(table)})")
        return [row["name"] for row in rows]

    def row_count(self, table: str) -> int:
        return int(self.fetch_value(f"SELECT COUNT(*) FROM {quote_identifier(table)}", default=0))

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MSSQLConnection:
    """Read-only SQL Server connection opened lazily through pyodbc."""

    def __init__(self, dsn: str, timeout: int = 30):
        """
        Initialize connection settings.

        Args:
            dsn: ODBC connection string
            timeout: Login and query timeout in seconds
        """
        self.dsn = dsn
        self.timeout = timeout
        self._conn = None

    def _connect(self):
        if self._conn is None:
            try:
                import pyodbc
            except ImportError as e:
                raise DatabaseError(
                    "The mssql driver needs pyodbc (pip install catalogsync[mssql])"
                ) from e
            try:
                self._conn = pyodbc.connect(self.dsn, timeout=self.timeout)
                self._conn.timeout = self.timeout
            except pyodbc.Error as e:
                raise DatabaseError(f"Could not connect to SQL Server: {e}") from e
        return self._conn

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        conn = self._connect()
        cursor = conn.cursor()
        try:
            cursor.execute(sql, *(params or ()))
            columns = [column[0] for column in cursor.description or ()]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except Exception as e:
            raise DatabaseError(str(e), sql) from e
        finally:
            cursor.close()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
