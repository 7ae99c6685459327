"""
Activity Models for Cashlia

Every change to an entry leaves a human-readable trail, so team members
can see who changed what in a shared book.

DESIGN DECISION: Activity logs are append-only. We never modify them.
They are removed only together with the entry they describe.
"""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from cashlia.models.records import EntryType, PaymentMode


class ActivityAction(str, Enum):
    """What happened to the entry."""
    CREATED = "created"
    UPDATED = "updated"


class FieldChange(BaseModel):
    """One changed field, rendered for people."""

    field: str
    old_value: str
    new_value: str


class ActivityLog(BaseModel):
    """
    A single activity record.

    details holds JSON: {"changes": [{"field", "old_value", "new_value"}]}
    for updates, a short summary for creations.
    """

    id: str
    entry_id: str
    user_id: str
    action: ActivityAction
    details: Optional[str] = Field(
        default=None,
        description="JSON-encoded change description"
    )
    created_at: str
    updated_at: str

    @property
    def changes(self) -> list[FieldChange]:
        if not self.details:
            return []
        payload = json.loads(self.details)
        return [FieldChange(**item) for item in payload.get("changes", [])]

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "activity_id": self.id,
            "entry_id": self.entry_id,
            "user_id": self.user_id,
            "action": self.action.value,
            "details": json.loads(self.details) if self.details else None,
            "created_at": self.created_at,
        }


# Display names of entry fields, in the order changes are reported
FIELD_LABELS = {
    "type": "Type",
    "amount": "Amount",
    "party_id": "Party",
    "category_id": "Category",
    "payment_mode": "Payment Mode",
    "date_time": "Date & Time",
    "remarks": "Remarks",
    "attachment_path": "Attachment",
}


def format_currency(amount: Optional[float], symbol: str = "₹") -> str:
    if amount is None:
        return "N/A"
    return f"{symbol}{float(amount):,.2f}"


class ActivityLogBuilder:
    """
    Helper class to build activity logs with common patterns.

    Usage:
        log = ActivityLogBuilder.entry_created(log_id, entry, user_id, now)
        changes = ActivityLogBuilder.describe_changes(old, new, names)
        log = ActivityLogBuilder.entry_updated(log_id, entry_id, user_id, changes, now)
    """

    @staticmethod
    def entry_created(
        log_id: str,
        entry: dict,
        user_id: str,
        timestamp: str,
        currency_symbol: str = "₹",
    ) -> ActivityLog:
        summary = {
            "type": EntryType(entry["type"]).label,
            "amount": format_currency(entry["amount"], currency_symbol),
        }
        return ActivityLog(
            id=log_id,
            entry_id=entry["id"],
            user_id=user_id,
            action=ActivityAction.CREATED,
            details=json.dumps(summary),
            created_at=timestamp,
            updated_at=timestamp,
        )

    @staticmethod
    def entry_updated(
        log_id: str,
        entry_id: str,
        user_id: str,
        changes: list[FieldChange],
        timestamp: str,
    ) -> ActivityLog:
        details = {"changes": [change.model_dump() for change in changes]}
        return ActivityLog(
            id=log_id,
            entry_id=entry_id,
            user_id=user_id,
            action=ActivityAction.UPDATED,
            details=json.dumps(details),
            created_at=timestamp,
            updated_at=timestamp,
        )

    @staticmethod
    def describe_changes(
        old: dict,
        new: dict,
        names: Optional[dict[str, str]] = None,
        currency_symbol: str = "₹",
    ) -> list[FieldChange]:
        """
        Diff two entry rows into human-readable changes.

        Args:
            old: Stored entry row
            new: Entry row after the patch
            names: Display names of party/category ids, keyed by id
            currency_symbol: Symbol used for amounts

        Returns:
            One FieldChange per field whose stored value differs
        """
        names = names or {}
        changes = []
        for field, label in FIELD_LABELS.items():
            before, after = old.get(field), new.get(field)
            if before == after:
                continue
            changes.append(FieldChange(
                field=label,
                old_value=_display_value(field, before, names, currency_symbol),
                new_value=_display_value(field, after, names, currency_symbol),
            ))
        return changes


def _display_value(field: str, value: Any, names: dict[str, str], currency_symbol: str) -> str:
    if field == "amount":
        return format_currency(value, currency_symbol)
    if field == "attachment_path":
        return "Has attachment" if value else "No attachment"
    if value is None or value == "":
        return "None"
    if field == "type":
        return EntryType(value).label
    if field == "payment_mode":
        return PaymentMode(value).label
    if field in ("party_id", "category_id"):
        return names.get(value, "Unknown")
    return str(value)
