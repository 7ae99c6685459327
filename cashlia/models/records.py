"""
Core Data Models for Cashlia

These models define the schemas of every row the data layer reads or writes.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Convert losslessly to and from store rows
4. Carry the per-record sync status

DESIGN DECISION: Rows travel through the store as plain dicts with
text timestamps, 0/1 booleans and float amounts. The models validate
on the way in (model_validate) and flatten on the way out (to_row).
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from cashlia.store.clock import normalize_timestamp


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class SyncStatus(str, Enum):
    """
    Per-record reconciliation state relative to the remote backend.

    Any local mutation sets PENDING. Only the sync engine sets the others.
    """
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"
    ERROR = "error"


# Local changes the remote has not accepted yet
UNPUSHED_STATUSES = (SyncStatus.PENDING.value, SyncStatus.ERROR.value)


class BusinessRole(str, Enum):
    """Role of a user inside a business."""
    OWNER = "owner"
    BUSINESS_PARTNER = "business_partner"
    STAFF_MEMBER = "staff_member"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class EntryType(str, Enum):
    CASH_IN = "cash_in"
    CASH_OUT = "cash_out"

    @property
    def label(self) -> str:
        return "Cash In" if self is EntryType.CASH_IN else "Cash Out"


class PaymentMode(str, Enum):
    CASH = "cash"
    ONLINE = "online"
    CREDIT_CARD = "credit_card"

    @property
    def label(self) -> str:
        return {
            PaymentMode.CASH: "Cash",
            PaymentMode.ONLINE: "Online",
            PaymentMode.CREDIT_CARD: "Credit Card",
        }[self]


class SyncMethod(str, Enum):
    """Which remote backend the sync engine talks to."""
    NONE = "none"
    GOOGLE_DRIVE = "google_drive"
    DOCUMENT_STORE = "document_store"


class DateFilter(str, Enum):
    """Named date ranges for entry listing."""
    ALL = "all"
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    RANGE = "range"


# =============================================================================
# STORED RECORDS
# =============================================================================

class Record(BaseModel):
    """Base for every persisted row."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="ignore",
    )

    id: str
    created_at: str
    updated_at: str

    def to_row(self) -> dict:
        """Flatten to a store row: enum values, 0/1 booleans."""
        row = self.model_dump(mode="json")
        for key, value in row.items():
            if isinstance(value, bool):
                row[key] = int(value)
        return row


class SyncedRecord(Record):
    """A row that participates in remote synchronization."""

    sync_status: SyncStatus = SyncStatus.PENDING


class User(Record):
    email: str = Field(..., min_length=3, max_length=254)
    mobile: Optional[str] = Field(default=None, max_length=20)
    password_hash: Optional[str] = None
    firebase_uid: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Email address must contain '@'")
        return v.lower()


class Business(SyncedRecord):
    name: str = Field(..., min_length=1, max_length=200)
    owner_id: str
    is_deleted: bool = False


class BusinessTeam(SyncedRecord):
    """Membership of a user in a business."""

    business_id: str
    user_id: str
    role: BusinessRole
    invited_by: Optional[str] = None
    joined_at: Optional[str] = None


class Book(SyncedRecord):
    business_id: str
    name: str = Field(..., min_length=1, max_length=200)
    created_by: str
    is_deleted: bool = False


class Party(SyncedRecord):
    business_id: str
    name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=20)


class Category(SyncedRecord):
    business_id: str
    name: str = Field(..., min_length=1, max_length=200)
    display_order: int = 0


class Entry(SyncedRecord):
    """A single cash-in/cash-out transaction in a book."""

    book_id: str
    type: EntryType
    amount: float = Field(..., gt=0)
    party_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.CASH
    date_time: str
    remarks: Optional[str] = Field(default=None, max_length=1000)
    attachment_path: Optional[str] = None
    created_by: str


class BusinessInvitation(BaseModel):
    """
    One-time invitation token for joining a business.

    Not a Record: the token is the primary key and the row is consumed
    (deleted) on acceptance.
    """

    business_id: str
    token: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    role: BusinessRole
    created_at: str
    expires_at: str

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

    def is_expired(self, now: str) -> bool:
        return self.expires_at <= now


# =============================================================================
# INPUTS - What callers hand to the repositories
# =============================================================================

class EntryDraft(BaseModel):
    """Fields a caller supplies to create an entry."""

    model_config = ConfigDict(str_strip_whitespace=True)

    type: EntryType
    amount: float = Field(..., gt=0)
    party_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.CASH
    date_time: Optional[Union[datetime, date, str]] = None
    remarks: Optional[str] = Field(default=None, max_length=1000)
    attachment_path: Optional[str] = None


class EntryPatch(BaseModel):
    """
    Partial entry update.

    Only fields the caller actually set are applied, so passing
    party_id=None explicitly clears the party.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[EntryType] = None
    amount: Optional[float] = Field(default=None, gt=0)
    party_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_mode: Optional[PaymentMode] = None
    date_time: Optional[Union[datetime, date, str]] = None
    remarks: Optional[str] = Field(default=None, max_length=1000)
    attachment_path: Optional[str] = None

    @model_validator(mode='after')
    def validate_required_fields(self) -> 'EntryPatch':
        """Fields that cannot be cleared on a stored entry."""
        for name in ("type", "amount", "payment_mode", "date_time"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict:
        """The set fields as store values."""
        values = self.model_dump(mode="json", exclude_unset=True)
        if "date_time" in values:
            values["date_time"] = normalize_timestamp(self.date_time)
        return values


class EntryFilters(BaseModel):
    """
    Entry listing filters.

    All filters combine with AND. Empty lists mean "no restriction".
    """

    date_filter: DateFilter = DateFilter.ALL
    date_from: Optional[Union[datetime, date, str]] = None
    date_to: Optional[Union[datetime, date, str]] = None
    entry_types: list[EntryType] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)
    parties: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    payment_modes: list[PaymentMode] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_range(self) -> 'EntryFilters':
        if self.date_filter == DateFilter.RANGE:
            if self.date_from is None or self.date_to is None:
                raise ValueError("A 'range' date filter needs both date_from and date_to")
        return self


class EntrySummary(BaseModel):
    """Totals over one entry listing."""

    total_cash_in: float = 0.0
    total_cash_out: float = 0.0
    net_balance: float = 0.0
    entry_count: int = 0


class FederatedIdentity(BaseModel):
    """Identity asserted by an external sign-in provider."""

    uid: str = Field(..., min_length=1)
    email: str
