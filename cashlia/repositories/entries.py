"""
Entry Repository

Cash-in/cash-out entries of the current book, plus their activity trail.

DESIGN DECISION: The summary is computed from exactly the list that
get_entries() returns for the same filters. There is no second query
with its own WHERE clause that could drift out of step with the listing.

Every create and update writes its activity row in the same transaction
as the entry; delete removes the entry and its activity together.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Union

import structlog

from cashlia.audit import ActivityTrail
from cashlia.errors import NotFoundError
from cashlia.models import (
    ActivityLog,
    ActivityLogBuilder,
    DateFilter,
    Entry,
    EntryDraft,
    EntryFilters,
    EntryPatch,
    EntrySummary,
    EntryType,
)
from cashlia.repositories.base import ScopedRepository
from cashlia.repositories.categories import CategoryRepository
from cashlia.repositories.context import ContextSelector
from cashlia.repositories.parties import PartyRepository
from cashlia.store import Delete, Eq, Gte, In, Insert, LocalStore, Lte, Select, Update, order
from cashlia.store.clock import format_timestamp, normalize_timestamp
from cashlia.store.query import all_of


logger = structlog.get_logger(__name__)


class EntryRepository(ScopedRepository):
    """Entries of the current book."""

    table = "entries"

    def __init__(
        self,
        store: LocalStore,
        context: ContextSelector,
        parties: PartyRepository,
        categories: CategoryRepository,
        activity: ActivityTrail,
        currency_symbol: str = "₹",
        tz: tzinfo = timezone.utc,
    ):
        super().__init__(store, context)
        self._parties = parties
        self._categories = categories
        self._activity = activity
        self._currency_symbol = currency_symbol
        self._tz = tz

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create(self, draft: EntryDraft) -> Entry:
        """
        Record an entry in the current book.

        date_time defaults to now; a value without an offset is read in
        the configured time zone. Party and category, when given, must
        belong to the current business.

        Raises:
            SelectionRequiredError: If no book is selected
            NotFoundError: If the party or category is not visible
        """
        user = await self._context.require_user()
        book = await self._require_book()
        await self._check_references(draft.party_id, draft.category_id)

        now = self._store.now()
        entry = Entry(
            id=self._store.generate_id(),
            book_id=book.id,
            type=draft.type,
            amount=draft.amount,
            party_id=draft.party_id,
            category_id=draft.category_id,
            payment_mode=draft.payment_mode,
            date_time=normalize_timestamp(draft.date_time, tz=self._tz) if draft.date_time else now,
            remarks=draft.remarks,
            attachment_path=draft.attachment_path,
            created_by=user.id,
            created_at=now,
            updated_at=now,
        )
        log = ActivityLogBuilder.entry_created(
            self._store.generate_id(),
            entry.to_row(),
            user.id,
            now,
            self._currency_symbol,
        )
        await self._store.run_transaction([
            Insert("entries", entry.to_row()),
            self._activity.insert_statement(log),
        ])
        self._activity.announce(log)
        return entry

    async def get_by_id(self, entry_id: str) -> Optional[Entry]:
        """The entry if it belongs to the current book."""
        book = await self._context.get_current_book()
        if book is None:
            return None
        rows = await self._store.query(Select(
            "entries",
            Eq("id", entry_id) & Eq("book_id", book.id),
            limit=1,
        ))
        return Entry.model_validate(rows[0]) if rows else None

    async def update(self, entry_id: str, patch: EntryPatch) -> Entry:
        """
        Apply a partial update and log what changed.

        The activity row lists each changed field with human-readable old
        and new values. A patch that changes nothing writes nothing.
        """
        user = await self._context.require_user()
        entry = await self.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")

        changes = patch.changes()
        if "date_time" in changes:
            changes["date_time"] = normalize_timestamp(patch.date_time, tz=self._tz)
        await self._check_references(
            changes.get("party_id") if "party_id" in changes else None,
            changes.get("category_id") if "category_id" in changes else None,
        )

        old_row = entry.to_row()
        updated = Entry.model_validate({**old_row, **changes})
        new_row = updated.to_row()
        names = await self._reference_names(old_row, new_row)
        diff = ActivityLogBuilder.describe_changes(old_row, new_row, names, self._currency_symbol)
        if not diff:
            return entry

        now = self._store.now()
        values = self._stamped(
            {key: new_row[key] for key in changes if old_row.get(key) != new_row.get(key)},
            now,
        )
        log = ActivityLogBuilder.entry_updated(self._store.generate_id(), entry.id, user.id, diff, now)
        await self._store.run_transaction([
            Update("entries", values, Eq("id", entry.id) & Eq("book_id", entry.book_id)),
            self._activity.insert_statement(log),
        ])
        self._activity.announce(log)
        return Entry.model_validate({**new_row, **values})

    async def delete(self, entry_id: str) -> None:
        """Hard-delete an entry together with its activity trail."""
        entry = await self.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        await self._store.run_transaction([
            Delete("activity_logs", Eq("entry_id", entry.id)),
            Delete("entries", Eq("id", entry.id) & Eq("book_id", entry.book_id)),
            self._deletion(entry.to_row()),
        ])
        logger.info("entry_deleted", entry_id=entry.id, book_id=entry.book_id)

    async def get_activity_logs(self, entry_id: str) -> list[ActivityLog]:
        """Activity of a visible entry, newest first."""
        if await self.get_by_id(entry_id) is None:
            return []
        return await self._activity.list_for_entry(entry_id)

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    async def get_entries(self, filters: Optional[EntryFilters] = None) -> list[Entry]:
        """
        Entries of the current book matching every filter.

        Args:
            filters: Date range, types, creators, parties, categories
                and payment modes. None means no filtering.

        Returns:
            Entries ordered by date_time, newest first. Empty when no
            book is selected.
        """
        filters = filters or EntryFilters()
        book = await self._context.get_current_book()
        if book is None:
            return []

        conditions = [Eq("book_id", book.id)]
        bounds = self.date_bounds(filters)
        if bounds is not None:
            conditions.append(Gte("date_time", bounds[0]))
            conditions.append(Lte("date_time", bounds[1]))
        if filters.entry_types:
            conditions.append(In("type", [t.value for t in filters.entry_types]))
        if filters.members:
            conditions.append(In("created_by", filters.members))
        if filters.parties:
            conditions.append(In("party_id", filters.parties))
        if filters.categories:
            conditions.append(In("category_id", filters.categories))
        if filters.payment_modes:
            conditions.append(In("payment_mode", [m.value for m in filters.payment_modes]))

        rows = await self._store.query(Select(
            "entries",
            all_of(conditions),
            order_by=order("-date_time"),
        ))
        return [Entry.model_validate(row) for row in rows]

    async def get_entry_summary(self, filters: Optional[EntryFilters] = None) -> EntrySummary:
        """Totals over exactly the entries get_entries(filters) returns."""
        entries = await self.get_entries(filters)
        total_in = sum(e.amount for e in entries if e.type == EntryType.CASH_IN)
        total_out = sum(e.amount for e in entries if e.type == EntryType.CASH_OUT)
        return EntrySummary(
            total_cash_in=total_in,
            total_cash_out=total_out,
            net_balance=total_in - total_out,
            entry_count=len(entries),
        )

    async def list(self) -> list[Entry]:
        return await self.get_entries()

    def date_bounds(
        self,
        filters: EntryFilters,
        today: Optional[date] = None,
    ) -> Optional[tuple[str, str]]:
        """
        Inclusive store-timestamp bounds for a date filter.

        Named ranges are whole days in the configured time zone.
        """
        today = today or datetime.now(self._tz).date()
        kind = filters.date_filter
        if kind == DateFilter.ALL:
            return None
        if kind == DateFilter.TODAY:
            return self._day_start(today), self._day_end(today)
        if kind == DateFilter.YESTERDAY:
            yesterday = today - timedelta(days=1)
            return self._day_start(yesterday), self._day_end(yesterday)
        if kind == DateFilter.THIS_MONTH:
            first = today.replace(day=1)
            last = (first + timedelta(days=32)).replace(day=1) - timedelta(days=1)
            return self._day_start(first), self._day_end(last)
        if kind == DateFilter.LAST_MONTH:
            last = today.replace(day=1) - timedelta(days=1)
            return self._day_start(last.replace(day=1)), self._day_end(last)
        return self._bound(filters.date_from, end=False), self._bound(filters.date_to, end=True)

    # -------------------------------------------------------------------------

    def _day_start(self, day: date) -> str:
        return format_timestamp(datetime.combine(day, time.min, tzinfo=self._tz))

    def _day_end(self, day: date) -> str:
        return format_timestamp(datetime.combine(day, time.max, tzinfo=self._tz))

    def _bound(self, value: Union[datetime, date, str], end: bool) -> str:
        if isinstance(value, str) and len(value.strip()) == 10:
            value = date.fromisoformat(value.strip())
        if isinstance(value, datetime) or isinstance(value, str):
            return normalize_timestamp(value, tz=self._tz)
        return self._day_end(value) if end else self._day_start(value)

    async def _check_references(self, party_id: Optional[str], category_id: Optional[str]) -> None:
        if party_id and await self._parties.get_by_id(party_id) is None:
            raise NotFoundError(f"Party not found: {party_id}")
        if category_id and await self._categories.get_by_id(category_id) is None:
            raise NotFoundError(f"Category not found: {category_id}")

    async def _reference_names(self, old: dict, new: dict) -> dict[str, str]:
        """Display names of the parties/categories either row points at."""
        names = {}
        for party_id in {old.get("party_id"), new.get("party_id")} - {None}:
            party = await self._parties.get_by_id(party_id)
            if party is not None:
                names[party_id] = party.name
        for category_id in {old.get("category_id"), new.get("category_id")} - {None}:
            category = await self._categories.get_by_id(category_id)
            if category is not None:
                names[category_id] = category.name
        return names
