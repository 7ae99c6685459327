"""
Store Schema

The nine tables of the ledger, plus the outbox of hard deletes waiting
to reach the remote, declared once as data. The SQLite backend renders
them to DDL; the document backend uses the same declarations for
defaults, NOT NULL, primary key and unique checks.

Foreign keys are declared for documentation but not enforced: remote
pulls may deliver an entry before the book it belongs to.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class Column:
    name: str
    type: str = "TEXT"
    nullable: bool = True
    default: Any = None
    references: Optional[str] = None

    def ddl(self) -> str:
        parts = [self.name, self.type]
        if not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            default = f"'{self.default}'" if isinstance(self.default, str) else str(self.default)
            parts.append(f"DEFAULT {default}")
        if self.references:
            parts.append(f"REFERENCES {self.references}")
        return " ".join(parts)


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[Column, ...]
    primary_key: str = "id"
    unique: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[tuple[str, ...], ...] = ()
    synced: bool = False

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def column(self, name: str) -> Column:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(name)

    def has_columns(self, names: Iterable[str]) -> bool:
        known = set(self.column_names)
        return all(name in known for name in names)

    def unique_groups(self) -> tuple[tuple[str, ...], ...]:
        """Primary key first, then each unique constraint."""
        return ((self.primary_key,),) + self.unique

    def ddl(self) -> list[str]:
        lines = []
        for column in self.columns:
            line = column.ddl()
            if column.name == self.primary_key:
                line += " PRIMARY KEY"
            lines.append(line)
        for group in self.unique:
            lines.append(f"UNIQUE ({', '.join(group)})")
        statements = [
            f"CREATE TABLE IF NOT EXISTS {self.name} (\n    " + ",\n    ".join(lines) + "\n)"
        ]
        for group in self.indexes:
            index_name = f"idx_{self.name}_{'_'.join(group)}"
            statements.append(
                f"CREATE INDEX IF NOT EXISTS {index_name} ON {self.name} ({', '.join(group)})"
            )
        return statements


def _timestamps() -> tuple[Column, ...]:
    return (
        Column("created_at", nullable=False),
        Column("updated_at", nullable=False),
    )


def _sync_status() -> Column:
    return Column("sync_status", nullable=False, default="pending")


USERS = Table(
    name="users",
    columns=(
        Column("id", nullable=False),
        Column("email", nullable=False),
        Column("mobile"),
        Column("password_hash"),
        Column("firebase_uid"),
        *_timestamps(),
    ),
    unique=(("email",),),
    indexes=(("mobile",), ("firebase_uid",)),
)

BUSINESSES = Table(
    name="businesses",
    columns=(
        Column("id", nullable=False),
        Column("name", nullable=False),
        Column("owner_id", nullable=False, references="users(id)"),
        Column("is_deleted", "INTEGER", nullable=False, default=0),
        *_timestamps(),
        _sync_status(),
    ),
    indexes=(("owner_id",),),
    synced=True,
)

BUSINESS_TEAM = Table(
    name="business_team",
    columns=(
        Column("id", nullable=False),
        Column("business_id", nullable=False, references="businesses(id)"),
        Column("user_id", nullable=False, references="users(id)"),
        Column("role", nullable=False),
        Column("invited_by", references="users(id)"),
        Column("joined_at"),
        *_timestamps(),
        _sync_status(),
    ),
    unique=(("business_id", "user_id"),),
    indexes=(("business_id",), ("user_id",)),
    synced=True,
)

BOOKS = Table(
    name="books",
    columns=(
        Column("id", nullable=False),
        Column("business_id", nullable=False, references="businesses(id)"),
        Column("name", nullable=False),
        Column("created_by", nullable=False, references="users(id)"),
        Column("is_deleted", "INTEGER", nullable=False, default=0),
        *_timestamps(),
        _sync_status(),
    ),
    indexes=(("business_id",),),
    synced=True,
)

PARTIES = Table(
    name="parties",
    columns=(
        Column("id", nullable=False),
        Column("business_id", nullable=False, references="businesses(id)"),
        Column("name", nullable=False),
        Column("phone"),
        *_timestamps(),
        _sync_status(),
    ),
    indexes=(("business_id",),),
    synced=True,
)

CATEGORIES = Table(
    name="categories",
    columns=(
        Column("id", nullable=False),
        Column("business_id", nullable=False, references="businesses(id)"),
        Column("name", nullable=False),
        Column("display_order", "INTEGER", nullable=False, default=0),
        *_timestamps(),
        _sync_status(),
    ),
    indexes=(("business_id",),),
    synced=True,
)

ENTRIES = Table(
    name="entries",
    columns=(
        Column("id", nullable=False),
        Column("book_id", nullable=False, references="books(id)"),
        Column("type", nullable=False),
        Column("amount", "REAL", nullable=False),
        Column("party_id", references="parties(id)"),
        Column("category_id", references="categories(id)"),
        Column("payment_mode", nullable=False, default="cash"),
        Column("date_time", nullable=False),
        Column("remarks"),
        Column("attachment_path"),
        Column("created_by", nullable=False, references="users(id)"),
        *_timestamps(),
        _sync_status(),
    ),
    indexes=(
        ("book_id",),
        ("party_id",),
        ("category_id",),
        ("created_by",),
        ("date_time",),
        ("type",),
    ),
    synced=True,
)

ACTIVITY_LOGS = Table(
    name="activity_logs",
    columns=(
        Column("id", nullable=False),
        Column("entry_id", nullable=False, references="entries(id)"),
        Column("user_id", nullable=False, references="users(id)"),
        Column("action", nullable=False),
        Column("details"),
        *_timestamps(),
    ),
    indexes=(("entry_id",), ("user_id",)),
)

BUSINESS_INVITATIONS = Table(
    name="business_invitations",
    columns=(
        Column("token", nullable=False),
        Column("business_id", nullable=False, references="businesses(id)"),
        Column("role", nullable=False),
        Column("created_at", nullable=False),
        Column("expires_at", nullable=False),
    ),
    primary_key="token",
    indexes=(("business_id",), ("expires_at",)),
)


# A snapshot of each hard-deleted synced row; sync_all removes the remote
# copy and then drops the snapshot
SYNC_DELETIONS = Table(
    name="sync_deletions",
    columns=(
        Column("id", nullable=False),
        Column("table_name", nullable=False),
        Column("record_id", nullable=False),
        Column("data", nullable=False),
        Column("created_at", nullable=False),
    ),
    indexes=(("table_name", "record_id"),),
)


TABLES: dict[str, Table] = {
    table.name: table
    for table in (
        USERS,
        BUSINESSES,
        BUSINESS_TEAM,
        BOOKS,
        PARTIES,
        CATEGORIES,
        ENTRIES,
        ACTIVITY_LOGS,
        BUSINESS_INVITATIONS,
        SYNC_DELETIONS,
    )
}

# Tables the sync engine pushes and pulls, parents before children
SYNCED_TABLES: tuple[str, ...] = (
    "businesses",
    "business_team",
    "books",
    "parties",
    "categories",
    "entries",
)
