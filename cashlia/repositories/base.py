"""
Scoped Repository Base

DESIGN DECISION: A repository never trusts an id on its own. Every read
and write is ANDed with the owning business or book of the current
selection, so an id from another tenant behaves exactly like an id that
does not exist.
"""

import json
from typing import Any, Optional

import structlog

from cashlia.errors import NotFoundError, ReferencedRecordError, SelectionRequiredError
from cashlia.models import Book, Business, SyncedRecord, SyncStatus
from cashlia.repositories.context import ContextSelector
from cashlia.store import Delete, Ensure, EnsureFailedError, Eq, Insert, LocalStore, Select, Update
from cashlia.store.query import Condition


logger = structlog.get_logger(__name__)


class ScopedRepository:
    """Shared plumbing for repositories scoped by the context selector."""

    table: str = ""

    def __init__(self, store: LocalStore, context: ContextSelector):
        self._store = store
        self._context = context

    async def _require_business(self) -> Business:
        business = await self._context.get_current_business()
        if business is None:
            raise SelectionRequiredError("No business selected")
        return business

    async def _require_book(self) -> Book:
        book = await self._context.get_current_book()
        if book is None:
            raise SelectionRequiredError("No book selected")
        return book

    def _stamped(self, values: dict[str, Any], now: Optional[str] = None) -> dict[str, Any]:
        """Attach the bookkeeping every local mutation carries."""
        return {
            **values,
            "updated_at": now or self._store.now(),
            "sync_status": SyncStatus.PENDING.value,
        }

    def _deletion(self, row: dict[str, Any]) -> Insert:
        """Outbox row telling the next sync to remove the remote copy of row."""
        return Insert("sync_deletions", {
            "id": self._store.generate_id(),
            "table_name": self.table,
            "record_id": row["id"],
            "data": json.dumps(row),
            "created_at": self._store.now(),
        })

    async def _apply_patch(
        self,
        record: SyncedRecord,
        values: dict[str, Any],
        where: Condition,
    ) -> SyncedRecord:
        """
        Validate a partial update against the model, then write only the
        changed columns plus updated_at/sync_status.

        Raises:
            NotFoundError: If the scoped row vanished meanwhile
        """
        updated = type(record).model_validate({**record.model_dump(), **self._stamped(values)})
        row = updated.to_row()
        changes = {key: row[key] for key in (*values.keys(), "updated_at", "sync_status")}
        result = await self._store.execute(Update(self.table, changes, where))
        if result.rows_affected == 0:
            raise NotFoundError(f"{self.table} row not found: {record.id}")
        return updated


class LookupRepository(ScopedRepository):
    """
    Business-scoped rows that entries point at through reference_column.

    Hard-deleted, but only while no entry references them. The reference
    check and the delete run in one transaction through an Ensure guard,
    so an entry created concurrently cannot slip in between.
    """

    reference_column: str = ""
    ordering: tuple = ()

    async def _scoped_rows(self, record_id: Optional[str] = None) -> list[dict]:
        business = await self._context.get_current_business()
        if business is None:
            return []
        where = Eq("business_id", business.id)
        if record_id is not None:
            where = where & Eq("id", record_id)
        return await self._store.query(Select(self.table, where, order_by=self.ordering))

    async def _delete_unreferenced(self, record_id: str, label: str) -> None:
        rows = await self._scoped_rows(record_id)
        if not rows:
            raise NotFoundError(f"{label} not found: {record_id}")
        try:
            await self._store.run_transaction([
                Ensure(
                    Select("entries", Eq(self.reference_column, record_id)),
                    exists=False,
                    message=f"Cannot delete {label.lower()}: it is used by one or more entries",
                ),
                Delete(self.table, Eq("id", record_id)),
                self._deletion(rows[0]),
            ])
        except EnsureFailedError as e:
            raise ReferencedRecordError(str(e)) from e
        logger.info("lookup_deleted", table=self.table, record_id=record_id)
