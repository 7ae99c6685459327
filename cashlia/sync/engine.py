"""
Sync Engine

Reconciles the local store with the selected remote.

Push (sync_all): every locally changed row (pending, or error from an
earlier failed push) is saved to the remote one by one. Success marks
it synced; failure marks it error and the batch carries on. Hard
deletes recorded in the sync_deletions outbox are then removed from
the remote, and each outbox row is dropped once its remove succeeds.

Pull (pull_updates): remote records are fed through merge_data, either
from a Drive folder walk or from standing document-store subscriptions.
A record that cannot be merged is logged and skipped; the rest of the
pull carries on.

Merge (merge_data) is last-write-wins on updated_at:
- deleted locally, not yet pushed -> no action
- no local row               -> insert remote, synced
- remote newer               -> overwrite local, synced
- local newer and unpushed   -> conflict, push local, synced
- anything else              -> no action, no network call

DESIGN DECISION: Whole-record last-write-wins. Two devices editing
different fields of the same entry concurrently keep only the later
edit. Timestamps are store-clock strings, so comparing them as text is
comparing them as instants.

Merges and pushes are serialized per (table, id), so a subscription
callback and a running sync_all never interleave on one record.
"""

import asyncio
import json
import weakref
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from cashlia.config import SyncSettings
from cashlia.errors import (
    CashliaError,
    ConfigurationError,
    SyncNotConfiguredError,
    TransientSyncError,
)
from cashlia.models import SyncMethod, SyncStatus, UNPUSHED_STATUSES
from cashlia.store import (
    Delete,
    Eq,
    In,
    Insert,
    LocalStore,
    PreferenceKey,
    PreferenceStore,
    Select,
    SYNCED_TABLES,
    TABLES,
    Update,
    order,
)
from cashlia.sync.interface import (
    DocumentStoreAdapter,
    DriveAdapter,
    RemoteAdapter,
    RemoteFile,
    Subscription,
)


logger = structlog.get_logger(__name__)


class MergeOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    PUSHED = "pushed"
    UNCHANGED = "unchanged"


class SyncFailure(BaseModel):
    table: str
    record_id: str
    error: str


class SyncReport(BaseModel):
    """Result of one push."""

    method: SyncMethod
    pushed: int = 0
    removed: int = 0
    failures: list[SyncFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


class PullReport(BaseModel):
    """Result of one pull."""

    method: SyncMethod
    outcomes: dict[MergeOutcome, int] = Field(default_factory=dict)
    failures: list[SyncFailure] = Field(default_factory=list)
    subscribed: list[str] = Field(default_factory=list)

    def count(self, outcome: MergeOutcome) -> int:
        return self.outcomes.get(outcome, 0)


class SyncEngine:
    """
    Push/pull reconciliation between the local store and one remote.

    Adapters are optional; selecting a method whose adapter is missing
    makes sync_all/pull_updates raise SyncNotConfiguredError.
    """

    def __init__(
        self,
        store: LocalStore,
        preferences: PreferenceStore,
        drive: Optional[DriveAdapter] = None,
        document_store: Optional[DocumentStoreAdapter] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self._store = store
        self._preferences = preferences
        self._drive = drive
        self._document_store = document_store
        self._root = (settings or SyncSettings()).drive_root_folder
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._subscriptions: dict[str, Subscription] = {}

    # -------------------------------------------------------------------------
    # Method selection
    # -------------------------------------------------------------------------

    async def get_sync_method(self) -> SyncMethod:
        value = await self._preferences.get(PreferenceKey.SYNC_METHOD)
        try:
            return SyncMethod(value) if value else SyncMethod.NONE
        except ValueError:
            logger.warning("unknown_sync_method", value=value)
            return SyncMethod.NONE

    async def set_sync_method(self, method: SyncMethod) -> None:
        """Select the remote. Switching away cancels document subscriptions."""
        if method != SyncMethod.DOCUMENT_STORE:
            self.stop()
        await self._preferences.set(PreferenceKey.SYNC_METHOD, method.value)

    def _adapter(self, method: SyncMethod) -> RemoteAdapter:
        if method == SyncMethod.GOOGLE_DRIVE and self._drive is not None:
            return self._drive
        if method == SyncMethod.DOCUMENT_STORE and self._document_store is not None:
            return self._document_store
        if method == SyncMethod.NONE:
            raise SyncNotConfiguredError("No sync method selected")
        raise SyncNotConfiguredError(f"No adapter available for {method.value}")

    async def _ready_adapter(self) -> tuple[SyncMethod, RemoteAdapter]:
        method = await self.get_sync_method()
        adapter = self._adapter(method)
        await adapter.ensure_ready()
        return method, adapter

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    def business_folder(self, business_id: str) -> str:
        return f"/{self._root}/businesses/{business_id}"

    async def _address(self, method: SyncMethod, table: str, record: dict[str, Any]) -> tuple[str, str]:
        """(collection, remote record id) of a row for the given method."""
        if method == SyncMethod.DOCUMENT_STORE:
            return table, record["id"]

        if table == "businesses":
            folder = self.business_folder(record["id"])
        elif table == "books":
            folder = f"{self.business_folder(record['business_id'])}/books/{record['id']}"
        elif table == "entries":
            books = await self._store.query(Select("books", Eq("id", record["book_id"]), limit=1))
            business_id = books[0]["business_id"] if books else "unknown"
            folder = f"{self.business_folder(business_id)}/books/{record['book_id']}"
        else:
            folder = self.business_folder(record.get("business_id") or "unknown")
        return folder, f"{table}_{record['id']}"

    @staticmethod
    def table_for_file(file: RemoteFile) -> Optional[tuple[str, str]]:
        """Recover (table, record id) from a '<table>_<id>.json' file name."""
        stem = file.name[:-len(".json")] if file.name.endswith(".json") else file.name
        for table in sorted(SYNCED_TABLES, key=len, reverse=True):
            prefix = f"{table}_"
            if stem.startswith(prefix) and len(stem) > len(prefix):
                return table, stem[len(prefix):]
        return None

    # -------------------------------------------------------------------------
    # Push
    # -------------------------------------------------------------------------

    async def sync_all(self) -> SyncReport:
        """
        Push every unpushed row to the selected remote.

        Raises:
            SyncNotConfiguredError: If the method is 'none' or has no adapter
            RemoteNotConfiguredError: If the remote needs authentication
        """
        method, adapter = await self._ready_adapter()
        report = SyncReport(method=method)

        groups: dict[str, list[tuple[str, dict, str]]] = {}
        for table in SYNCED_TABLES:
            rows = await self._store.query(Select(table, In("sync_status", UNPUSHED_STATUSES)))
            for row in rows:
                collection, remote_id = await self._address(method, table, row)
                groups.setdefault(collection, []).append((table, row, remote_id))

        for collection, records in groups.items():
            logger.info("sync_group_started", collection=collection, records=len(records))
            for table, row, remote_id in records:
                async with self._record_lock(table, row["id"]):
                    if await self._push(adapter, table, row, collection, remote_id):
                        report.pushed += 1
                    else:
                        report.failures.append(SyncFailure(
                            table=table,
                            record_id=row["id"],
                            error="push failed",
                        ))

        await self._push_deletions(method, adapter, report)

        logger.info(
            "sync_all_finished",
            method=method.value,
            pushed=report.pushed,
            removed=report.removed,
            failed=report.failed,
        )
        return report

    async def _push_deletions(self, method: SyncMethod, adapter: RemoteAdapter, report: SyncReport) -> None:
        """Remove the remote copies of hard-deleted rows, oldest delete first."""
        deletions = await self._store.query(Select("sync_deletions", order_by=order("created_at")))
        for deletion in deletions:
            table, record_id = deletion["table_name"], deletion["record_id"]
            collection, remote_id = await self._address(method, table, json.loads(deletion["data"]))
            async with self._record_lock(table, record_id):
                try:
                    await adapter.remove(collection, remote_id)
                except TransientSyncError as e:
                    logger.warning("record_remove_failed", table=table, record_id=record_id, error=str(e))
                    report.failures.append(SyncFailure(table=table, record_id=record_id, error=str(e)))
                    continue
                await self._store.execute(Delete("sync_deletions", Eq("id", deletion["id"])))
                report.removed += 1

    async def _push(
        self,
        adapter: RemoteAdapter,
        table: str,
        row: dict[str, Any],
        collection: str,
        remote_id: str,
    ) -> bool:
        """Save one row remotely and record the outcome on the row."""
        payload = {**row, "sync_status": SyncStatus.SYNCED.value}
        try:
            await adapter.save(collection, remote_id, payload)
        except TransientSyncError as e:
            logger.warning("record_push_failed", table=table, record_id=row["id"], error=str(e))
            await self._mark(table, row, SyncStatus.ERROR)
            return False
        await self._mark(table, row, SyncStatus.SYNCED)
        return True

    async def _mark(self, table: str, row: dict[str, Any], status: SyncStatus) -> None:
        # Skip rows edited since they were read; they stay pending
        await self._store.execute(Update(
            table,
            {"sync_status": status.value},
            Eq("id", row["id"]) & Eq("updated_at", row["updated_at"]),
        ))

    # -------------------------------------------------------------------------
    # Pull
    # -------------------------------------------------------------------------

    async def pull_updates(self) -> PullReport:
        """
        Bring remote changes into the local store.

        Drive: walk each live local business's folder and merge every file.
        Document store: make sure each synced table has a subscription.
        """
        method, adapter = await self._ready_adapter()
        report = PullReport(method=method)

        if isinstance(adapter, DocumentStoreAdapter):
            for table in SYNCED_TABLES:
                existing = self._subscriptions.get(table)
                if existing is None or not existing.active:
                    self._subscriptions[table] = await adapter.subscribe(
                        table,
                        self._subscription_handler(table),
                    )
                report.subscribed.append(table)
            return report

        businesses = await self._store.query(Select("businesses", Eq("is_deleted", 0)))
        for business in businesses:
            files = await adapter.list_files(self.business_folder(business["id"]))
            for file in files:
                parsed = self.table_for_file(file)
                if parsed is None:
                    continue
                table, record_id = parsed
                try:
                    remote = await adapter.download(file.file_id)
                    outcome = await self.merge_data(table, remote)
                except ConfigurationError:
                    raise
                except (CashliaError, ValueError) as e:
                    logger.warning("record_pull_failed", table=table, record_id=record_id, error=str(e))
                    report.failures.append(SyncFailure(table=table, record_id=record_id, error=str(e)))
                    continue
                report.outcomes[outcome] = report.outcomes.get(outcome, 0) + 1

        logger.info("pull_finished", method=method.value, outcomes={k.value: v for k, v in report.outcomes.items()})
        return report

    def _subscription_handler(self, table: str):
        async def handle(documents: list[dict[str, Any]]) -> None:
            for document in documents:
                try:
                    await self.merge_data(table, document)
                except (CashliaError, ValueError) as e:
                    logger.warning(
                        "record_merge_failed",
                        table=table,
                        record_id=document.get("id"),
                        error=str(e),
                    )
        return handle

    def stop(self) -> None:
        """Cancel all standing subscriptions."""
        for subscription in self._subscriptions.values():
            subscription.cancel()
        self._subscriptions.clear()

    @property
    def subscriptions(self) -> dict[str, Subscription]:
        return dict(self._subscriptions)

    # -------------------------------------------------------------------------
    # Merge
    # -------------------------------------------------------------------------

    async def merge_data(self, table: str, remote: dict[str, Any]) -> MergeOutcome:
        """
        Reconcile one remote record with its local row.

        Raises:
            ValueError: If the table is not synced or the record has no id
            TransientSyncError: If local wins and the push fails
        """
        if table not in SYNCED_TABLES:
            raise ValueError(f"Table is not synced: {table}")
        record_id = remote.get("id")
        if not record_id:
            raise ValueError(f"Remote {table} record has no id")

        columns = TABLES[table].column_names
        incoming = {key: value for key, value in remote.items() if key in columns}
        incoming["sync_status"] = SyncStatus.SYNCED.value

        async with self._record_lock(table, record_id):
            if await self._store.query(Select(
                "sync_deletions",
                Eq("table_name", table) & Eq("record_id", record_id),
                limit=1,
            )):
                return MergeOutcome.UNCHANGED

            rows = await self._store.query(Select(table, Eq("id", record_id), limit=1))
            if not rows:
                await self._store.execute(Insert(table, incoming))
                return MergeOutcome.INSERTED

            local = rows[0]
            local_ts = local.get("updated_at") or ""
            remote_ts = remote.get("updated_at") or ""

            if remote_ts > local_ts:
                if local.get("sync_status") in UNPUSHED_STATUSES:
                    logger.info("conflict_resolved_remote_wins", table=table, record_id=record_id)
                values = {key: value for key, value in incoming.items() if key != "id"}
                await self._store.execute(Update(table, values, Eq("id", record_id)))
                return MergeOutcome.UPDATED

            if local_ts > remote_ts and local.get("sync_status") in UNPUSHED_STATUSES:
                logger.info("conflict_resolved_local_wins", table=table, record_id=record_id)
                await self._store.execute(Update(
                    table,
                    {"sync_status": SyncStatus.CONFLICT.value},
                    Eq("id", record_id),
                ))
                method = await self.get_sync_method()
                adapter = self._adapter(method)
                collection, remote_id = await self._address(method, table, local)
                if not await self._push(adapter, table, local, collection, remote_id):
                    raise TransientSyncError(f"Push of {table}/{record_id} failed")
                return MergeOutcome.PUSHED

            return MergeOutcome.UNCHANGED

    @asynccontextmanager
    async def _record_lock(self, table: str, record_id: str):
        key = (table, record_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield
