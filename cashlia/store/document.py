"""
Document Store Implementation

Fallback local store for interpreters built without the sqlite3
extension. Each table is one JSON document (a list of rows) under the
data directory, named <database>_<table>.json.

DESIGN DECISION: Same contract as SQLite, evaluated in Python.
Filtering, ordering, defaults, NOT NULL, primary key and unique
constraints all come from the shared schema and the shared condition
objects, so switching backends never changes query results.

TRADEOFFS:
- Whole tables live in memory (fine for a personal ledger)
- Each committed mutation rewrites the touched table documents
"""

import copy
import json
import os
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
from cashlia.store.schema import TABLES, Table


logger = structlog.get_logger(__name__)


def _sort_key(value: Any) -> tuple:
    # SQLite orders NULL before everything else, numbers before text
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def apply_select(rows: list[dict], statement: Select) -> list[dict]:
    """Filter, order and limit rows in memory with SQL semantics."""
    result = [row for row in rows if statement.where is None or statement.where.matches(row)]
    for order_by in reversed(statement.order_by):
        result.sort(key=lambda row: _sort_key(row.get(order_by.field)), reverse=order_by.descending)
    if statement.limit is not None:
        result = result[:statement.limit]
    return [dict(row) for row in result]


class DocumentStore(LocalStore):
    """JSON-document implementation of the local store."""

    def __init__(
        self,
        directory: Union[str, Path],
        database_name: str = "cashlia_db",
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self._directory = Path(directory)
        self._database_name = database_name
        self._tables: dict[str, list[dict]] = {}

    def document_path(self, table: str) -> Path:
        return self._directory / f"{self._database_name}_{table}.json"

    async def _open(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        for name in TABLES:
            path = self.document_path(name)
            if path.exists():
                try:
                    self._tables[name] = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    raise StoreError(f"Corrupt table document {path}: {e}") from e
            else:
                self._tables[name] = []
        logger.info("document_store_opened", directory=str(self._directory), tables=len(TABLES))

    async def _close(self) -> None:
        self._tables = {}

    async def _query(self, statement: Select) -> list[dict[str, Any]]:
        return apply_select(self._tables[statement.table], statement)

    async def _execute(self, statement: Statement) -> ExecuteResult:
        snapshot = copy.deepcopy(self._tables[statement.table])
        try:
            affected = self._apply(statement)
        except StoreError:
            self._tables[statement.table] = snapshot
            raise
        self._persist({statement.table})
        return ExecuteResult(rows_affected=affected)

    async def _transaction(self, statements: list[Statement]) -> None:
        touched = {s.table for s in statements if not isinstance(s, Ensure)}
        snapshot = {name: copy.deepcopy(self._tables[name]) for name in touched}
        try:
            for statement in statements:
                if isinstance(statement, Ensure):
                    found = bool(apply_select(
                        self._tables[statement.table],
                        Select(statement.table, statement.query.where, limit=1),
                    ))
                    if found != statement.exists:
                        raise EnsureFailedError(statement.message)
                else:
                    self._apply(statement)
        except BaseException:
            self._tables.update(snapshot)
            raise
        self._persist(touched)

    # -------------------------------------------------------------------------
    # In-memory statement application
    # -------------------------------------------------------------------------

    def _apply(self, statement: Statement) -> int:
        table = TABLES[statement.table]
        rows = self._tables[statement.table]
        if isinstance(statement, Insert):
            row = self._complete_row(table, statement.values)
            conflicts = self._conflicting(table, rows, row)
            if conflicts and not statement.replace:
                raise IntegrityError(
                    f"{table.name}: UNIQUE constraint failed on {conflicts[0][1]}"
                )
            conflicting = {index for index, _ in conflicts}
            rows[:] = [r for i, r in enumerate(rows) if i not in conflicting]
            rows.append(row)
            return 1
        if isinstance(statement, Update):
            affected = 0
            for index, row in enumerate(rows):
                if not statement.where.matches(row):
                    continue
                updated = dict(row)
                updated.update({k: _plain(v) for k, v in statement.values.items()})
                self._check_not_null(table, updated)
                conflicts = [
                    c for c in self._conflicting(table, rows, updated) if c[0] != index
                ]
                if conflicts:
                    raise IntegrityError(
                        f"{table.name}: UNIQUE constraint failed on {conflicts[0][1]}"
                    )
                rows[index] = updated
                affected += 1
            return affected
        if isinstance(statement, Delete):
            kept = [row for row in rows if not statement.where.matches(row)]
            affected = len(rows) - len(kept)
            rows[:] = kept
            return affected
        raise StoreError(f"Cannot apply {type(statement).__name__}")

    def _complete_row(self, table: Table, values: dict) -> dict:
        row = {}
        for column in table.columns:
            if column.name in values and values[column.name] is not None:
                row[column.name] = _plain(values[column.name])
            elif column.name in values:
                row[column.name] = None
            else:
                row[column.name] = column.default
        self._check_not_null(table, row)
        return row

    def _check_not_null(self, table: Table, row: dict) -> None:
        for column in table.columns:
            if not column.nullable and row.get(column.name) is None:
                raise IntegrityError(
                    f"NOT NULL constraint failed: {table.name}.{column.name}"
                )

    def _conflicting(self, table: Table, rows: list[dict], candidate: dict) -> list[tuple[int, str]]:
        """Indexes of rows sharing a primary key or unique group with candidate."""
        conflicts = []
        for group in table.unique_groups():
            key = tuple(candidate.get(name) for name in group)
            if any(part is None for part in key):
                continue
            for index, row in enumerate(rows):
                if tuple(row.get(name) for name in group) == key:
                    conflicts.append((index, ", ".join(f"{table.name}.{n}" for n in group)))
        return conflicts

    def _persist(self, tables: set[str]) -> None:
        for name in tables:
            path = self.document_path(name)
            temp = path.with_suffix(".json.tmp")
            try:
                temp.write_text(json.dumps(self._tables[name]), encoding="utf-8")
                os.replace(temp, path)
            except OSError as e:
                raise StoreError(f"Failed to write table document {path}: {e}") from e


def _plain(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value
