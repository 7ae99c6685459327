"""
Tests for the local store backends.

Both SQLite and the JSON document store run the same assertions, so
switching backends can never change query results.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cashlia.config import StoreSettings
from cashlia.store import (
    Clock,
    Contains,
    Delete,
    DocumentStore,
    Ensure,
    EnsureFailedError,
    Eq,
    Gt,
    Gte,
    In,
    Insert,
    IntegrityError,
    JsonFilePreferenceStore,
    Lt,
    Lte,
    MemoryPreferenceStore,
    QueryError,
    Select,
    StoreNotInitializedError,
    Update,
    create_local_store,
    normalize_timestamp,
    order,
    parse_timestamp,
)
from cashlia.store.query import _Comparison
from cashlia.store.sqlite import SQLiteStore, compile_select


NOW = "2024-03-01T10:00:00.000000Z"


def party_row(party_id: str, name: str, phone=None, business_id: str = "b1") -> dict:
    return {
        "id": party_id,
        "business_id": business_id,
        "name": name,
        "phone": phone,
        "created_at": NOW,
        "updated_at": NOW,
    }


class TestClock:
    """Tests for the store timestamp shape and monotonic clock."""

    def test_clock_never_repeats(self):
        """Test that readings strictly increase even with a frozen source."""
        frozen = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        clock = Clock(lambda: frozen)
        first, second, third = clock.now(), clock.now(), clock.now()
        assert first == "2024-03-01T10:00:00.000000Z"
        assert first < second < third
        assert second == "2024-03-01T10:00:00.000001Z"

    def test_clock_ignores_backwards_wall_clock(self):
        """Test that a wall clock moving back does not move readings back."""
        readings = iter([
            datetime(2024, 3, 1, 10, 0, 5, tzinfo=timezone.utc),
            datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc),
        ])
        clock = Clock(lambda: next(readings))
        assert clock.now() < clock.now()

    def test_normalize_timestamp(self):
        """Test that offsets are converted to UTC in the fixed shape."""
        assert normalize_timestamp("2024-03-01T10:00:00+05:30") == "2024-03-01T04:30:00.000000Z"
        assert normalize_timestamp("2024-03-01T04:30:00Z") == "2024-03-01T04:30:00.000000Z"
        assert parse_timestamp(NOW) == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_string_order_matches_time_order(self):
        """Test that timestamps sort as text the way they sort as instants."""
        base = datetime(2024, 3, 1, 9, 59, 59, 999999, tzinfo=timezone.utc)
        moments = [base + timedelta(microseconds=step) for step in (0, 1, 2, 10**6, 10**9)]
        texts = [normalize_timestamp(moment) for moment in moments]
        assert texts == sorted(texts)


class TestStoreContract:
    """Tests run against every backend."""

    async def test_insert_and_select(self, store):
        """Test a basic insert and filtered select."""
        await store.execute(Insert("parties", party_row("p1", "Acme")))
        await store.execute(Insert("parties", party_row("p2", "Zeta", business_id="b2")))

        rows = await store.query(Select("parties", Eq("business_id", "b1")))
        assert [row["id"] for row in rows] == ["p1"]
        assert rows[0]["sync_status"] == "pending"

    async def test_defaults_applied(self, store):
        """Test that omitted columns receive their schema defaults."""
        await store.execute(Insert("categories", {
            "id": "c1",
            "business_id": "b1",
            "name": "Rent",
            "created_at": NOW,
            "updated_at": NOW,
        }))
        rows = await store.query(Select("categories", Eq("id", "c1")))
        assert rows[0]["display_order"] == 0
        assert rows[0]["sync_status"] == "pending"

    async def test_primary_key_conflict(self, store):
        """Test that a duplicate primary key is rejected."""
        await store.execute(Insert("parties", party_row("p1", "Acme")))
        with pytest.raises(IntegrityError):
            await store.execute(Insert("parties", party_row("p1", "Other")))

    async def test_insert_replace(self, store):
        """Test that replace overwrites a row colliding on a unique group."""
        member = {
            "id": "m1",
            "business_id": "b1",
            "user_id": "u1",
            "role": "staff_member",
            "created_at": NOW,
            "updated_at": NOW,
        }
        await store.execute(Insert("business_team", member))
        await store.execute(Insert(
            "business_team",
            {**member, "id": "m2", "role": "business_partner"},
            replace=True,
        ))
        rows = await store.query(Select("business_team", Eq("business_id", "b1")))
        assert len(rows) == 1
        assert rows[0]["id"] == "m2"
        assert rows[0]["role"] == "business_partner"

    async def test_not_null_enforced(self, store):
        """Test that a missing required column is rejected."""
        with pytest.raises(IntegrityError):
            await store.execute(Insert("parties", {
                "id": "p1",
                "business_id": "b1",
                "created_at": NOW,
                "updated_at": NOW,
            }))

    async def test_update_and_delete_counts(self, store):
        """Test rows_affected for update and delete."""
        for index in range(3):
            await store.execute(Insert("parties", party_row(f"p{index}", f"Party {index}")))

        result = await store.execute(Update("parties", {"phone": "555"}, In("id", ["p0", "p1"])))
        assert result.rows_affected == 2

        result = await store.execute(Delete("parties", Eq("phone", None)))
        assert result.rows_affected == 1
        assert len(await store.query(Select("parties"))) == 2

    async def test_ordering_and_limit(self, store):
        """Test multi-column ordering, NULLs first, and limits."""
        for category_id, name, display_order in (
            ("c1", "Travel", 2),
            ("c2", "Rent", 1),
            ("c3", "Food", 2),
        ):
            await store.execute(Insert("categories", {
                "id": category_id,
                "business_id": "b1",
                "name": name,
                "display_order": display_order,
                "created_at": NOW,
                "updated_at": NOW,
            }))
        rows = await store.query(Select("categories", order_by=order("display_order", "name")))
        assert [row["name"] for row in rows] == ["Rent", "Food", "Travel"]

        rows = await store.query(Select("categories", order_by=order("-name"), limit=2))
        assert [row["name"] for row in rows] == ["Travel", "Rent"]

    async def test_contains_is_case_insensitive(self, store):
        """Test substring search with wildcard characters treated literally."""
        await store.execute(Insert("parties", party_row("p1", "Acme Traders")))
        await store.execute(Insert("parties", party_row("p2", "100% Cotton")))
        await store.execute(Insert("parties", party_row("p3", "Bolt", phone="98450")))

        rows = await store.query(Select("parties", Contains("name", "acme")))
        assert [row["id"] for row in rows] == ["p1"]

        rows = await store.query(Select("parties", Contains("name", "%")))
        assert [row["id"] for row in rows] == ["p2"]

        rows = await store.query(Select("parties", Contains("name", "845") | Contains("phone", "845")))
        assert [row["id"] for row in rows] == ["p3"]

    async def test_comparisons_and_empty_in(self, store):
        """Test range conditions and an empty IN list."""
        await store.execute(Insert("business_invitations", {
            "token": "a" * 64,
            "business_id": "b1",
            "role": "staff_member",
            "created_at": NOW,
            "expires_at": "2024-03-08T10:00:00.000000Z",
        }))
        assert await store.query(Select("business_invitations", Gt("expires_at", NOW)))
        assert not await store.query(Select("business_invitations", Lte("expires_at", NOW)))
        assert await store.query(Select("business_invitations", In("token", []))) == []

    def test_comparison_needs_an_operator(self):
        """Test that only the concrete comparisons can be built."""
        with pytest.raises(TypeError):
            _Comparison("amount", 1)
        assert Gte("amount", 1).matches({"amount": 1})
        assert not Lt("amount", 1).matches({"amount": 1})
        assert not Gt("amount", 1).matches({"amount": None})

    async def test_transaction_rolls_back(self, store):
        """Test that a failing statement undoes the whole batch."""
        await store.execute(Insert("parties", party_row("p1", "Acme")))
        with pytest.raises(IntegrityError):
            await store.run_transaction([
                Insert("parties", party_row("p2", "Bolt")),
                Insert("parties", party_row("p1", "Duplicate")),
            ])
        rows = await store.query(Select("parties"))
        assert [row["id"] for row in rows] == ["p1"]

    async def test_ensure_guard(self, store):
        """Test that an Ensure guard aborts and rolls back the batch."""
        await store.execute(Insert("parties", party_row("p1", "Acme")))
        with pytest.raises(EnsureFailedError, match="still referenced"):
            await store.run_transaction([
                Delete("parties", Eq("id", "p1")),
                Ensure(Select("parties", Eq("name", "Nobody")), exists=True, message="still referenced"),
            ])
        assert len(await store.query(Select("parties"))) == 1

        await store.run_transaction([
            Ensure(Select("entries", Eq("party_id", "p1")), exists=False),
            Delete("parties", Eq("id", "p1")),
        ])
        assert await store.query(Select("parties")) == []

    async def test_unknown_column_rejected(self, store):
        """Test that statements naming unknown columns never run."""
        with pytest.raises(QueryError):
            await store.query(Select("parties", Eq("colour", "red")))
        with pytest.raises(QueryError):
            await store.query(Select("nonexistent"))

    async def test_execute_rejects_ensure(self, store):
        """Test that Ensure is only valid inside a transaction."""
        with pytest.raises(QueryError):
            await store.execute(Ensure(Select("parties")))

    async def test_timestamps_from_store_clock(self, store):
        """Test that successive store readings strictly increase."""
        readings = [store.now() for _ in range(5)]
        assert readings == sorted(set(readings))

    async def test_generate_id_unique(self, store):
        """Test that generated ids do not repeat."""
        assert len({store.generate_id() for _ in range(100)}) == 100


class TestStoreLifecycle:
    """Tests for opening, reopening and selecting backends."""

    async def test_use_before_initialize(self, tmp_path):
        """Test that an unopened store refuses work."""
        store = DocumentStore(tmp_path)
        with pytest.raises(StoreNotInitializedError):
            await store.query(Select("parties"))

    async def test_document_store_persists(self, tmp_path):
        """Test that committed rows survive a reopen."""
        store = DocumentStore(tmp_path, "ledger")
        await store.initialize()
        await store.execute(Insert("parties", party_row("p1", "Acme")))
        await store.close()

        assert (tmp_path / "ledger_parties.json").exists()
        reopened = DocumentStore(tmp_path, "ledger")
        await reopened.initialize()
        rows = await reopened.query(Select("parties"))
        assert [row["name"] for row in rows] == ["Acme"]

    async def test_sqlite_store_persists(self, tmp_path):
        """Test that committed rows survive a reopen."""
        path = tmp_path / "ledger.sqlite3"
        store = SQLiteStore(path)
        await store.initialize()
        await store.execute(Insert("parties", party_row("p1", "Acme")))
        await store.close()

        reopened = SQLiteStore(path)
        await reopened.initialize()
        assert len(await reopened.query(Select("parties"))) == 1
        await reopened.close()

    def test_create_local_store_backend_choice(self, tmp_path):
        """Test that settings pick the backend."""
        document = create_local_store(StoreSettings(backend="document", data_dir=tmp_path))
        assert isinstance(document, DocumentStore)
        sqlite = create_local_store(StoreSettings(backend="sqlite", data_dir=tmp_path))
        assert isinstance(sqlite, SQLiteStore)
        assert sqlite.path.endswith("cashlia_db.sqlite3")

    def test_compile_select(self):
        """Test SQL rendering with bound parameters."""
        sql, params = compile_select(Select(
            "entries",
            Eq("book_id", "k1") & In("type", ["cash_in"]),
            order_by=order("-date_time"),
            limit=5,
        ))
        assert sql == (
            "SELECT * FROM entries WHERE (book_id = ?) AND (type IN (?)) "
            "ORDER BY date_time DESC LIMIT ?"
        )
        assert params == ["k1", "cash_in", 5]


class TestPreferenceStores:
    """Tests for preference storage."""

    async def test_memory_preferences(self):
        """Test get, set and remove."""
        preferences = MemoryPreferenceStore({"a": "1"})
        assert await preferences.get("a") == "1"
        await preferences.set("b", "2")
        await preferences.remove_many("a", "b", "missing")
        assert await preferences.get("a") is None
        assert await preferences.get("b") is None

    async def test_json_file_preferences_persist(self, tmp_path):
        """Test that preferences survive a new instance."""
        path = tmp_path / "prefs" / "preferences.json"
        preferences = JsonFilePreferenceStore(path)
        await preferences.set("current_book_id", "k1")

        reloaded = JsonFilePreferenceStore(path)
        assert await reloaded.get("current_book_id") == "k1"
        await reloaded.remove("current_book_id")
        assert await JsonFilePreferenceStore(path).get("current_book_id") is None
