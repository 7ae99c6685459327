"""
Tests for the entity repositories.

Test strategy:
1. Every repository runs against both store backends
2. Scenarios go through the wired cashbook, the way a UI would
3. Tenant isolation: rows of another business behave as missing
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from cashlia.config import Settings
from cashlia.errors import (
    AuthenticationError,
    NotFoundError,
    ReferencedRecordError,
    SelectionRequiredError,
    ValidationError,
)
from cashlia.models import (
    ActivityAction,
    BusinessRole,
    DateFilter,
    EntryDraft,
    EntryFilters,
    EntryPatch,
    EntryType,
    PaymentMode,
    SyncStatus,
)
from cashlia.orchestrator import open_cashbook
from cashlia.store import Eq, Select, Update


def cash_in(amount: float, **fields) -> EntryDraft:
    return EntryDraft(type=EntryType.CASH_IN, amount=amount, **fields)


def cash_out(amount: float, **fields) -> EntryDraft:
    return EntryDraft(type=EntryType.CASH_OUT, amount=amount, **fields)


async def mark_synced(app, table: str, record_id: str) -> None:
    await app.store.execute(Update(table, {"sync_status": "synced"}, Eq("id", record_id)))


class TestBusinesses:
    """Tests for businesses and their teams."""

    async def test_create_adds_owner_membership(self, app, owner):
        """Test that the owner's team row is created with the business."""
        user, business, _ = owner
        members = await app.team.get_team_members(business.id)
        assert [(m.user_id, m.role) for m in members] == [(user.id, BusinessRole.OWNER)]
        assert await app.businesses.get_user_role(business.id) == BusinessRole.OWNER

    async def test_create_requires_session(self, app):
        """Test that a business cannot be created signed out."""
        with pytest.raises(AuthenticationError):
            await app.businesses.create("Shop")

    async def test_update_marks_pending(self, app, owner):
        """Test that renaming bumps updated_at and resets sync status."""
        _, business, _ = owner
        await mark_synced(app, "businesses", business.id)

        renamed = await app.businesses.update(business.id, "Corner Shop & Co")
        stored = await app.businesses.get_by_id(business.id)
        assert stored.name == "Corner Shop & Co"
        assert stored.sync_status == SyncStatus.PENDING
        assert stored.updated_at == renamed.updated_at
        assert stored.updated_at > business.updated_at

    async def test_delete_is_soft(self, app, owner):
        """Test that a deleted business disappears but its row remains."""
        _, business, _ = owner
        await app.businesses.delete(business.id)

        assert await app.businesses.get_by_id(business.id) is None
        assert await app.businesses.list() == []
        rows = await app.store.query(Select("businesses", Eq("id", business.id)))
        assert rows[0]["is_deleted"] == 1
        assert rows[0]["sync_status"] == "pending"

    async def test_only_owner_deletes(self, app, owner):
        """Test that a team member cannot delete the business."""
        _, business, _ = owner
        partner = await app.users.register("partner@example.com", None, "pw")
        await app.users.login("owner@example.com", "secret-1")
        await app.team.add_member(business.id, partner.id, BusinessRole.BUSINESS_PARTNER)

        await app.users.login("partner@example.com", "pw")
        assert await app.businesses.get_user_role(business.id) == BusinessRole.BUSINESS_PARTNER
        with pytest.raises(ValidationError):
            await app.businesses.delete(business.id)

    async def test_owner_membership_protected(self, app, owner):
        """Test that the owner can be neither removed nor re-roled."""
        user, business, _ = owner
        with pytest.raises(ValidationError):
            await app.team.remove_member(business.id, user.id)
        with pytest.raises(ValidationError):
            await app.team.update_role(business.id, user.id, BusinessRole.STAFF_MEMBER)

    async def test_member_role_change_and_removal(self, app, owner):
        """Test managing a non-owner member."""
        _, business, _ = owner
        staff = await app.users.register("staff@example.com", None, "pw")
        await app.users.login("owner@example.com", "secret-1")
        await app.team.add_member(business.id, staff.id, BusinessRole.STAFF_MEMBER)

        await app.team.update_role(business.id, staff.id, BusinessRole.BUSINESS_PARTNER)
        roles = {m.user_id: m.role for m in await app.team.get_team_members(business.id)}
        assert roles[staff.id] == BusinessRole.BUSINESS_PARTNER

        await app.team.remove_member(business.id, staff.id)
        with pytest.raises(NotFoundError):
            await app.team.remove_member(business.id, staff.id)

    async def test_re_adding_member_replaces_row(self, app, owner):
        """Test that one user has at most one membership per business."""
        _, business, _ = owner
        staff = await app.users.register("staff@example.com", None, "pw")
        await app.users.login("owner@example.com", "secret-1")
        first = await app.team.add_member(business.id, staff.id, BusinessRole.STAFF_MEMBER)
        second = await app.team.add_member(business.id, staff.id, BusinessRole.BUSINESS_PARTNER)

        members = [m for m in await app.team.get_team_members(business.id) if m.user_id == staff.id]
        assert len(members) == 1
        assert members[0].role == BusinessRole.BUSINESS_PARTNER
        assert second.id == first.id == members[0].id

    async def test_owner_cannot_be_added_with_lower_role(self, app, owner):
        """Test that add_member cannot demote the owner."""
        user, business, _ = owner
        with pytest.raises(ValidationError):
            await app.team.add_member(business.id, user.id, BusinessRole.STAFF_MEMBER)
        roles = {m.user_id: m.role for m in await app.team.get_team_members(business.id)}
        assert roles[user.id] == BusinessRole.OWNER


class TestBooks:
    """Tests for books."""

    async def test_list_newest_first(self, app, owner):
        """Test that books are listed by updated_at descending."""
        _, _, book = owner
        second = await app.books.create("Expenses")
        assert [b.id for b in await app.books.list()] == [second.id, book.id]

        await app.books.update(book.id, "Daily Sales 2024")
        assert [b.name for b in await app.books.list()] == ["Daily Sales 2024", "Expenses"]

    async def test_delete_clears_selection(self, app, owner):
        """Test that deleting the current book drops it from the selection."""
        _, _, book = owner
        await app.books.delete(book.id)
        assert await app.books.get_by_id(book.id) is None
        assert await app.context.get_current_book() is None
        with pytest.raises(NotFoundError):
            await app.books.delete(book.id)

    async def test_create_needs_business(self, app):
        """Test that a book needs a selected business."""
        await app.users.register("solo@example.com", None, "pw")
        with pytest.raises(SelectionRequiredError):
            await app.books.create("Orphan")

    async def test_clone_copies_entries(self, app, owner):
        """Test that a clone has fresh entries with the same content."""
        user, _, book = owner
        first = await app.entries.create(cash_in(100, date_time="2024-01-10T09:00:00Z", remarks="sale"))
        second = await app.entries.create(cash_out(40, date_time="2024-01-11T09:00:00Z"))
        await mark_synced(app, "entries", first.id)

        clone = await app.books.clone(book.id, "Daily Sales (copy)")
        rows = await app.store.query(Select("entries", Eq("book_id", clone.id)))

        assert len(rows) == 2
        assert {row["id"] for row in rows}.isdisjoint({first.id, second.id})
        assert sorted(row["date_time"] for row in rows) == [
            "2024-01-10T09:00:00.000000Z",
            "2024-01-11T09:00:00.000000Z",
        ]
        assert {row["sync_status"] for row in rows} == {"pending"}
        assert {row["created_by"] for row in rows} == {user.id}
        assert sorted(row["amount"] for row in rows) == [40.0, 100.0]

        source = await app.store.query(Select("entries", Eq("book_id", book.id)))
        assert len(source) == 2
        assert await app.context.get_current_book_id() == book.id

    async def test_books_scoped_to_business(self, app, owner):
        """Test that a book of another business is invisible."""
        _, _, book = owner
        other = await app.businesses.create("Second Shop")
        await app.context.set_current_business(other.id)
        assert await app.books.get_by_id(book.id) is None
        assert await app.books.list() == []
        with pytest.raises(NotFoundError):
            await app.books.update(book.id, "Hijacked")


class TestParties:
    """Tests for parties."""

    async def test_search_name_or_phone(self, app, owner):
        """Test case-insensitive search on both columns."""
        await app.parties.create("Acme Traders", "98450 12345")
        await app.parties.create("Bolt Supplies")
        await app.parties.create("Cotton House", "080 2222")

        assert [p.name for p in await app.parties.search("ACME")] == ["Acme Traders"]
        assert [p.name for p in await app.parties.search("2222")] == ["Cotton House"]
        assert [p.name for p in await app.parties.search("o")] == [
            "Bolt Supplies",
            "Cotton House",
        ]

    async def test_update_clears_phone(self, app, owner):
        """Test that an empty phone removes it."""
        party = await app.parties.create("Acme", "123")
        updated = await app.parties.update(party.id, phone="")
        assert updated.phone is None
        assert (await app.parties.get_by_id(party.id)).phone is None

    async def test_referenced_party_cannot_be_deleted(self, app, owner):
        """Test that deletion is blocked while entries use the party."""
        party = await app.parties.create("Acme")
        entry = await app.entries.create(cash_in(10, party_id=party.id))

        with pytest.raises(ReferencedRecordError):
            await app.parties.delete(party.id)
        assert await app.parties.get_by_id(party.id) is not None

        await app.entries.delete(entry.id)
        await app.parties.delete(party.id)
        assert await app.parties.get_by_id(party.id) is None

    async def test_other_business_party_not_found(self, app, owner):
        """Test that a party of another business cannot be touched."""
        party = await app.parties.create("Acme")
        other = await app.businesses.create("Second Shop")
        await app.context.set_current_business(other.id)

        assert await app.parties.get_by_id(party.id) is None
        assert await app.parties.list() == []
        with pytest.raises(NotFoundError):
            await app.parties.delete(party.id)


class TestCategories:
    """Tests for categories."""

    async def test_display_order_appends(self, app, owner):
        """Test that new categories go last unless placed explicitly."""
        rent = await app.categories.create("Rent")
        food = await app.categories.create("Food")
        assert (rent.display_order, food.display_order) == (1, 2)
        assert await app.categories.get_max_display_order() == 2

        travel = await app.categories.create("Travel", display_order=1)
        assert [c.name for c in await app.categories.list()] == ["Rent", "Travel", "Food"]
        assert travel.display_order == 1

    async def test_reorder(self, app, owner):
        """Test that reorder assigns 1..n in the given order."""
        rent = await app.categories.create("Rent")
        food = await app.categories.create("Food")
        travel = await app.categories.create("Travel")

        await app.categories.reorder([travel.id, rent.id, food.id])
        listed = await app.categories.list()
        assert [(c.name, c.display_order) for c in listed] == [
            ("Travel", 1),
            ("Rent", 2),
            ("Food", 3),
        ]
        assert {c.sync_status for c in listed} == {SyncStatus.PENDING}

    async def test_referenced_category_cannot_be_deleted(self, app, owner):
        """Test that deletion is blocked while entries use the category."""
        category = await app.categories.create("Rent")
        await app.entries.create(cash_out(500, category_id=category.id))
        with pytest.raises(ReferencedRecordError):
            await app.categories.delete(category.id)


class TestEntries:
    """Tests for entries and their activity trail."""

    async def test_create_defaults_and_activity(self, app, owner):
        """Test a new entry's defaults and its creation log."""
        user, _, book = owner
        entry = await app.entries.create(cash_in(250))

        assert entry.book_id == book.id
        assert entry.created_by == user.id
        assert entry.payment_mode == PaymentMode.CASH
        assert entry.date_time == entry.created_at
        assert entry.sync_status == SyncStatus.PENDING

        logs = await app.entries.get_activity_logs(entry.id)
        assert [log.action for log in logs] == [ActivityAction.CREATED]
        assert logs[0].user_id == user.id

    async def test_create_needs_book(self, app):
        """Test that an entry needs a selected book."""
        await app.users.register("solo@example.com", None, "pw")
        await app.businesses.create("Shop")
        with pytest.raises(SelectionRequiredError):
            await app.entries.create(cash_in(1))

    async def test_create_rejects_foreign_party(self, app, owner):
        """Test that parties of another business cannot be referenced."""
        _, business, _ = owner
        other = await app.businesses.create("Second Shop")
        await app.context.set_current_business(other.id)
        foreign = await app.parties.create("Elsewhere Ltd")

        await app.context.set_current_business(business.id)
        books = await app.books.list()
        await app.context.set_current_book(books[0].id)
        with pytest.raises(NotFoundError):
            await app.entries.create(cash_in(10, party_id=foreign.id))

    async def test_update_logs_readable_changes(self, app, owner):
        """Test that an update records old and new display values."""
        party = await app.parties.create("Acme Traders")
        entry = await app.entries.create(cash_in(100, party_id=party.id))

        updated = await app.entries.update(entry.id, EntryPatch(
            amount=150,
            payment_mode=PaymentMode.ONLINE,
            party_id=None,
        ))
        assert updated.amount == 150
        assert updated.party_id is None
        assert updated.updated_at > entry.updated_at

        logs = await app.entries.get_activity_logs(entry.id)
        assert [log.action for log in logs] == [ActivityAction.UPDATED, ActivityAction.CREATED]
        changes = [(c.field, c.old_value, c.new_value) for c in logs[0].changes]
        assert changes == [
            ("Amount", "₹100.00", "₹150.00"),
            ("Party", "Acme Traders", "None"),
            ("Payment Mode", "Cash", "Online"),
        ]

    async def test_noop_update_writes_nothing(self, app, owner):
        """Test that a patch without effective changes adds no log."""
        entry = await app.entries.create(cash_in(100, remarks="rent"))
        unchanged = await app.entries.update(entry.id, EntryPatch(amount=100, remarks="rent"))
        assert unchanged.updated_at == entry.updated_at
        assert len(await app.entries.get_activity_logs(entry.id)) == 1

    async def test_delete_removes_activity(self, app, owner):
        """Test that an entry's trail goes with it."""
        entry = await app.entries.create(cash_in(100))
        await app.entries.update(entry.id, EntryPatch(amount=120))
        await app.entries.delete(entry.id)

        assert await app.entries.get_by_id(entry.id) is None
        assert await app.store.query(Select("activity_logs", Eq("entry_id", entry.id))) == []
        with pytest.raises(NotFoundError):
            await app.entries.delete(entry.id)

    async def test_entries_isolated_between_books(self, app, owner):
        """Test that entries of another book behave as missing."""
        entry = await app.entries.create(cash_in(100))
        other = await app.books.create("Expenses")
        await app.context.set_current_book(other.id)

        assert await app.entries.get_by_id(entry.id) is None
        assert await app.entries.get_entries() == []
        with pytest.raises(NotFoundError):
            await app.entries.update(entry.id, EntryPatch(amount=1))

    async def test_filters_combine(self, app, owner):
        """Test type, payment mode, party, category and member filters."""
        user, _, _ = owner
        acme = await app.parties.create("Acme")
        rent = await app.categories.create("Rent")
        await app.entries.create(cash_in(100, party_id=acme.id))
        await app.entries.create(cash_out(30, category_id=rent.id, payment_mode=PaymentMode.ONLINE))
        await app.entries.create(cash_out(20, payment_mode=PaymentMode.CREDIT_CARD))

        def amounts(entries):
            return sorted(e.amount for e in entries)

        assert amounts(await app.entries.get_entries(
            EntryFilters(entry_types=[EntryType.CASH_OUT])
        )) == [20.0, 30.0]
        assert amounts(await app.entries.get_entries(
            EntryFilters(payment_modes=[PaymentMode.ONLINE, PaymentMode.CASH])
        )) == [30.0, 100.0]
        assert amounts(await app.entries.get_entries(EntryFilters(parties=[acme.id]))) == [100.0]
        assert amounts(await app.entries.get_entries(EntryFilters(categories=[rent.id]))) == [30.0]
        assert len(await app.entries.get_entries(EntryFilters(members=[user.id]))) == 3
        assert await app.entries.get_entries(EntryFilters(members=["someone-else"])) == []
        assert await app.entries.get_entries(EntryFilters(
            entry_types=[EntryType.CASH_IN],
            payment_modes=[PaymentMode.ONLINE],
        )) == []

    async def test_listing_newest_first(self, app, owner):
        """Test that entries are ordered by date_time descending."""
        await app.entries.create(cash_in(1, date_time="2024-01-01T08:00:00Z"))
        await app.entries.create(cash_in(3, date_time="2024-01-03T08:00:00Z"))
        await app.entries.create(cash_in(2, date_time="2024-01-02T08:00:00Z"))
        assert [e.amount for e in await app.entries.list()] == [3.0, 2.0, 1.0]

    async def test_today_and_yesterday(self, app, owner):
        """Test the named day filters against the current date."""
        now = datetime.now(timezone.utc)
        await app.entries.create(cash_in(10, date_time=now))
        await app.entries.create(cash_in(20, date_time=now - timedelta(days=1)))
        await app.entries.create(cash_in(40, date_time=now - timedelta(days=40)))

        today = await app.entries.get_entries(EntryFilters(date_filter=DateFilter.TODAY))
        yesterday = await app.entries.get_entries(EntryFilters(date_filter=DateFilter.YESTERDAY))
        assert [e.amount for e in today] == [10.0]
        assert [e.amount for e in yesterday] == [20.0]
        assert len(await app.entries.get_entries(EntryFilters(date_filter=DateFilter.ALL))) == 3

    async def test_range_filter_inclusive(self, app, owner):
        """Test that a date range covers whole days at both ends."""
        await app.entries.create(cash_in(1, date_time="2024-01-31T23:59:59Z"))
        await app.entries.create(cash_in(2, date_time="2024-01-01T00:00:00Z"))
        await app.entries.create(cash_in(3, date_time="2024-02-01T00:00:00Z"))

        entries = await app.entries.get_entries(EntryFilters(
            date_filter=DateFilter.RANGE,
            date_from="2024-01-01",
            date_to=date(2024, 1, 31),
        ))
        assert sorted(e.amount for e in entries) == [1.0, 2.0]

    async def test_named_range_bounds(self, app):
        """Test month arithmetic of the named ranges."""
        bounds = app.entries.date_bounds
        assert bounds(EntryFilters(), today=date(2024, 2, 10)) is None
        assert bounds(EntryFilters(date_filter=DateFilter.THIS_MONTH), today=date(2024, 2, 10)) == (
            "2024-02-01T00:00:00.000000Z",
            "2024-02-29T23:59:59.999999Z",
        )
        assert bounds(EntryFilters(date_filter=DateFilter.LAST_MONTH), today=date(2024, 3, 31)) == (
            "2024-02-01T00:00:00.000000Z",
            "2024-02-29T23:59:59.999999Z",
        )
        assert bounds(EntryFilters(date_filter=DateFilter.LAST_MONTH), today=date(2024, 1, 15)) == (
            "2023-12-01T00:00:00.000000Z",
            "2023-12-31T23:59:59.999999Z",
        )
        assert bounds(EntryFilters(date_filter=DateFilter.YESTERDAY), today=date(2024, 3, 1)) == (
            "2024-02-29T00:00:00.000000Z",
            "2024-02-29T23:59:59.999999Z",
        )

    async def test_summary_matches_listing(self, app, owner):
        """Test that totals are computed over exactly the listed entries."""
        acme = await app.parties.create("Acme")
        await app.entries.create(cash_in(100.5, party_id=acme.id))
        await app.entries.create(cash_in(50))
        await app.entries.create(cash_out(30.25, party_id=acme.id, payment_mode=PaymentMode.ONLINE))
        await app.entries.create(cash_out(10))

        for filters in (
            EntryFilters(),
            EntryFilters(parties=[acme.id]),
            EntryFilters(entry_types=[EntryType.CASH_OUT]),
            EntryFilters(payment_modes=[PaymentMode.CREDIT_CARD]),
        ):
            entries = await app.entries.get_entries(filters)
            summary = await app.entries.get_entry_summary(filters)
            cash_in_total = sum(e.amount for e in entries if e.type == EntryType.CASH_IN)
            cash_out_total = sum(e.amount for e in entries if e.type == EntryType.CASH_OUT)
            assert summary.entry_count == len(entries)
            assert summary.total_cash_in == pytest.approx(cash_in_total)
            assert summary.total_cash_out == pytest.approx(cash_out_total)
            assert summary.net_balance == pytest.approx(cash_in_total - cash_out_total)

        overall = await app.entries.get_entry_summary()
        assert overall.net_balance == pytest.approx(110.25)


class TestEntryTimeZone:
    """Tests for entry times given without an offset."""

    @pytest.fixture
    async def kolkata(self, store, preferences, drive, document_store, monkeypatch):
        monkeypatch.setenv("TIMEZONE", "Asia/Kolkata")
        cashbook = await open_cashbook(
            settings=Settings(),
            store=store,
            preferences=preferences,
            drive=drive,
            document_store=document_store,
            configure_logs=False,
        )
        await cashbook.users.register("owner@example.com", None, "secret-1")
        await cashbook.businesses.create("Corner Shop")
        await cashbook.books.create("Daily Sales")
        yield cashbook
        cashbook.sync.stop()

    async def test_naive_times_read_in_configured_zone(self, kolkata):
        """Test that naive datetimes and offset-less strings are local times."""
        naive = await kolkata.entries.create(cash_in(1, date_time=datetime(2024, 1, 1, 10, 0)))
        text = await kolkata.entries.create(cash_in(2, date_time="2024-01-01T10:00:00"))
        aware = await kolkata.entries.create(cash_in(3, date_time="2024-01-01T10:00:00Z"))

        assert naive.date_time == "2024-01-01T04:30:00.000000Z"
        assert text.date_time == "2024-01-01T04:30:00.000000Z"
        assert aware.date_time == "2024-01-01T10:00:00.000000Z"

        moved = await kolkata.entries.update(naive.id, EntryPatch(date_time=datetime(2024, 1, 2, 5, 30)))
        assert moved.date_time == "2024-01-02T00:00:00.000000Z"

    async def test_naive_range_bounds_in_configured_zone(self, kolkata):
        """Test that a range given as local wall-clock times selects local times."""
        await kolkata.entries.create(cash_in(1, date_time=datetime(2024, 1, 1, 10, 0)))
        await kolkata.entries.create(cash_in(2, date_time="2024-01-01T10:00:00Z"))

        entries = await kolkata.entries.get_entries(EntryFilters(
            date_filter=DateFilter.RANGE,
            date_from=datetime(2024, 1, 1, 9, 0),
            date_to="2024-01-01T11:00:00",
        ))
        assert [e.amount for e in entries] == [1.0]

        whole_day = await kolkata.entries.get_entries(EntryFilters(
            date_filter=DateFilter.RANGE,
            date_from="2024-01-01",
            date_to="2024-01-01",
        ))
        assert sorted(e.amount for e in whole_day) == [1.0, 2.0]
