"""
Abstract Local Store Interface

DESIGN DECISION: We define an abstract interface for local storage.
This allows us to:
1. Run on SQLite wherever the interpreter ships it
2. Fall back to plain JSON documents where it does not
3. Use throwaway stores in tests
4. Keep repositories decoupled from the storage engine

The base class owns everything both backends must agree on: schema
validation of statements, the initialized check, the write lock, id
generation and the clock. Backends only implement the raw operations.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from cashlia.errors import CashliaError
from cashlia.store.clock import Clock
from cashlia.store.query import Delete, Ensure, Insert, Select, Statement, Update
from cashlia.store.schema import TABLES, Table


class ExecuteResult(BaseModel):
    """Outcome of a single mutating statement."""

    rows_affected: int = 0


class LocalStore(ABC):
    """
    Abstract interface for the local relational store.

    Any storage implementation (SQLite, JSON documents, etc.)
    must implement the underscored primitives.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or Clock()
        self._write_lock = asyncio.Lock()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Open the store and create any missing tables and indexes.

        Safe to call more than once.
        """
        if self._initialized:
            return
        await self._open()
        self._initialized = True

    async def close(self) -> None:
        if self._initialized:
            await self._close()
            self._initialized = False

    async def query(self, statement: Select) -> list[dict[str, Any]]:
        """
        Run a read-only select.

        Args:
            statement: The select to run

        Returns:
            Matching rows as dicts, ordered and limited as requested

        Raises:
            StoreNotInitializedError: If initialize() has not completed
            QueryError: If the select names an unknown table or column
        """
        self._check_ready()
        if not isinstance(statement, Select):
            raise QueryError(f"query() only accepts Select, got {type(statement).__name__}")
        self._validate(statement)
        return await self._query(statement)

    async def execute(self, statement: Statement) -> ExecuteResult:
        """
        Run a single mutating statement.

        Returns:
            ExecuteResult with the number of rows affected

        Raises:
            IntegrityError: On primary key, unique or NOT NULL violations
        """
        self._check_ready()
        if isinstance(statement, Ensure) or not isinstance(statement, (Insert, Update, Delete)):
            raise QueryError(f"execute() does not accept {type(statement).__name__}")
        self._validate(statement)
        async with self._write_lock:
            return await self._execute(statement)

    async def run_transaction(self, statements: Sequence[Statement]) -> None:
        """
        Run statements atomically.

        Either every statement takes effect or none does. On failure
        the error is re-raised after rollback.

        Raises:
            EnsureFailedError: If an Ensure guard does not hold
        """
        self._check_ready()
        for statement in statements:
            if not isinstance(statement, (Insert, Update, Delete, Ensure)):
                raise QueryError(
                    f"run_transaction() does not accept {type(statement).__name__}"
                )
            self._validate(statement)
        if not statements:
            return
        async with self._write_lock:
            await self._transaction(list(statements))

    def generate_id(self) -> str:
        return str(uuid.uuid4())

    def now(self) -> str:
        """Current time from the store's single monotonic clock."""
        return self._clock.now()

    def table(self, name: str) -> Table:
        try:
            return TABLES[name]
        except KeyError:
            raise QueryError(f"Unknown table: {name}")

    # -------------------------------------------------------------------------
    # Backend primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _open(self) -> None:
        pass

    @abstractmethod
    async def _close(self) -> None:
        pass

    @abstractmethod
    async def _query(self, statement: Select) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def _execute(self, statement: Statement) -> ExecuteResult:
        pass

    @abstractmethod
    async def _transaction(self, statements: list[Statement]) -> None:
        pass

    # -------------------------------------------------------------------------

    def _check_ready(self) -> None:
        if not self._initialized:
            raise StoreNotInitializedError("Local store is not initialized")

    def _validate(self, statement: Any) -> None:
        table = self.table(statement.table)
        unknown = [name for name in statement.fields() if name not in table.column_names]
        if unknown:
            raise QueryError(
                f"Unknown column(s) for {table.name}: {', '.join(sorted(set(unknown)))}"
            )
        if isinstance(statement, Insert) and not statement.values:
            raise QueryError(f"Insert into {table.name} has no values")
        if isinstance(statement, Update) and not statement.values:
            raise QueryError(f"Update of {table.name} has no values")
        if isinstance(statement, Ensure):
            self._validate(statement.query)


class StoreError(CashliaError):
    """Base exception for local store operations."""
    pass


class StoreNotInitializedError(StoreError):
    """Store used before initialize() completed."""
    pass


class QueryError(StoreError):
    """Malformed statement. A programming error, never retried."""
    pass


class IntegrityError(StoreError):
    """Primary key, unique or NOT NULL constraint violated."""
    pass


class EnsureFailedError(StoreError):
    """A transaction guard did not hold; the transaction was rolled back."""
    pass
