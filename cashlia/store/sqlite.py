"""
SQLite Store Implementation

DESIGN DECISION: SQLite is the primary local store because:
1. It ships with Python on every desktop and server platform
2. One file per install, no server
3. Real transactions with rollback
4. Indexes keep date-filtered entry listings fast

The connection runs in autocommit mode; run_transaction opens an
explicit BEGIN IMMEDIATE so a batch either commits as a whole or is
rolled back.
"""

import sqlite3
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from cashlia.store.clock import Clock
from cashlia.store.interface import (
    EnsureFailedError,
    ExecuteResult,
    IntegrityError,
    LocalStore,
    StoreError,
)
from cashlia.store.query import Delete, Ensure, Insert, Select, Statement, Update
from cashlia.store.schema import TABLES


logger = structlog.get_logger(__name__)


def compile_select(statement: Select) -> tuple[str, list]:
    sql = f"SELECT * FROM {statement.table}"
    params: list = []
    if statement.where is not None:
        where_sql, params = statement.where.to_sql()
        sql += f" WHERE {where_sql}"
    if statement.order_by:
        clauses = ", ".join(
            f"{o.field} {'DESC' if o.descending else 'ASC'}" for o in statement.order_by
        )
        sql += f" ORDER BY {clauses}"
    if statement.limit is not None:
        sql += " LIMIT ?"
        params = params + [int(statement.limit)]
    return sql, params


def compile_statement(statement: Statement) -> tuple[str, list]:
    """Render a mutating statement as parameterized SQL."""
    if isinstance(statement, Insert):
        columns = list(statement.values.keys())
        verb = "INSERT OR REPLACE" if statement.replace else "INSERT"
        placeholders = ", ".join("?" for _ in columns)
        sql = f"{verb} INTO {statement.table} ({', '.join(columns)}) VALUES ({placeholders})"
        return sql, [_bind(statement.values[c]) for c in columns]
    if isinstance(statement, Update):
        assignments = ", ".join(f"{c} = ?" for c in statement.values)
        where_sql, where_params = statement.where.to_sql()
        sql = f"UPDATE {statement.table} SET {assignments} WHERE {where_sql}"
        return sql, [_bind(v) for v in statement.values.values()] + where_params
    if isinstance(statement, Delete):
        where_sql, where_params = statement.where.to_sql()
        return f"DELETE FROM {statement.table} WHERE {where_sql}", where_params
    raise StoreError(f"Cannot compile {type(statement).__name__}")


def _bind(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteStore(LocalStore):
    """
    SQLite implementation of the local store.

    A single connection is shared by all repositories; mutations are
    serialized by the base class write lock.
    """

    def __init__(
        self,
        path: Union[str, Path],
        timeout: float = 10.0,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self._path = str(path)
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> str:
        return self._path

    async def _open(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            for table in TABLES.values():
                for ddl in table.ddl():
                    conn.execute(ddl)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open SQLite database at {self._path}: {e}") from e
        self._conn = conn
        logger.info("sqlite_store_opened", path=self._path, tables=len(TABLES))

    async def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def _query(self, statement: Select) -> list[dict[str, Any]]:
        sql, params = compile_select(statement)
        try:
            cursor = self._conn.execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StoreError(f"Query on {statement.table} failed: {e}") from e

    async def _execute(self, statement: Statement) -> ExecuteResult:
        sql, params = compile_statement(statement)
        try:
            cursor = self._conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise IntegrityError(f"{statement.table}: {e}") from e
        except sqlite3.Error as e:
            raise StoreError(f"Statement on {statement.table} failed: {e}") from e
        return ExecuteResult(rows_affected=max(cursor.rowcount, 0))

    async def _transaction(self, statements: list[Statement]) -> None:
        conn = self._conn
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"Could not start transaction: {e}") from e
        try:
            for statement in statements:
                if isinstance(statement, Ensure):
                    self._check_guard(statement)
                else:
                    sql, params = compile_statement(statement)
                    conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            conn.execute("ROLLBACK")
            raise IntegrityError(str(e)) from e
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            raise StoreError(f"Transaction failed: {e}") from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def _check_guard(self, guard: Ensure) -> None:
        sql, params = compile_select(Select(guard.query.table, guard.query.where, limit=1))
        found = self._conn.execute(sql, params).fetchone() is not None
        if found != guard.exists:
            raise EnsureFailedError(guard.message)
