"""
Data Models Package

This package contains all Pydantic models used by the Cashlia data layer.
All rows flowing through the repositories must conform to these schemas.
"""

from cashlia.models.records import (
    Book,
    Business,
    BusinessInvitation,
    BusinessRole,
    BusinessTeam,
    Category,
    DateFilter,
    Entry,
    EntryDraft,
    EntryFilters,
    EntryPatch,
    EntrySummary,
    EntryType,
    FederatedIdentity,
    Party,
    PaymentMode,
    Record,
    SyncedRecord,
    SyncMethod,
    SyncStatus,
    UNPUSHED_STATUSES,
    User,
)
from cashlia.models.activity import (
    ActivityAction,
    ActivityLog,
    ActivityLogBuilder,
    FieldChange,
    format_currency,
)

__all__ = [
    # Records
    "Book",
    "Business",
    "BusinessInvitation",
    "BusinessTeam",
    "Category",
    "Entry",
    "Party",
    "Record",
    "SyncedRecord",
    "User",
    # Enums
    "BusinessRole",
    "DateFilter",
    "EntryType",
    "PaymentMode",
    "SyncMethod",
    "SyncStatus",
    "UNPUSHED_STATUSES",
    # Inputs and results
    "EntryDraft",
    "EntryFilters",
    "EntryPatch",
    "EntrySummary",
    "FederatedIdentity",
    # Activity
    "ActivityAction",
    "ActivityLog",
    "ActivityLogBuilder",
    "FieldChange",
    "format_currency",
]
