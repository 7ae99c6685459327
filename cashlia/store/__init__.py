"""
Local Store Package

Provides the abstract local store, its SQLite and JSON-document
implementations, the typed statements they execute, and the
preference store.
"""

import importlib.util
from typing import Optional

from cashlia.config import StoreSettings
from cashlia.store.clock import Clock, format_timestamp, normalize_timestamp, parse_timestamp
from cashlia.store.document import DocumentStore
from cashlia.store.interface import (
    EnsureFailedError,
    ExecuteResult,
    IntegrityError,
    LocalStore,
    QueryError,
    StoreError,
    StoreNotInitializedError,
)
from cashlia.store.preferences import (
    JsonFilePreferenceStore,
    MemoryPreferenceStore,
    PreferenceKey,
    PreferenceStore,
)
from cashlia.store.query import (
    And,
    Contains,
    Delete,
    Ensure,
    Eq,
    Gt,
    Gte,
    In,
    Insert,
    Lt,
    Lte,
    Or,
    OrderBy,
    Select,
    Update,
    order,
)
from cashlia.store.schema import SYNCED_TABLES, TABLES


def sqlite_available() -> bool:
    """True when the interpreter was built with the sqlite3 extension."""
    return importlib.util.find_spec("_sqlite3") is not None


def create_local_store(settings: StoreSettings, clock: Optional[Clock] = None) -> LocalStore:
    """
    Build the local store selected by settings.

    'auto' picks SQLite when available and the document store otherwise.
    """
    backend = settings.backend
    if backend == "auto":
        backend = "sqlite" if sqlite_available() else "document"
    if backend == "sqlite":
        from cashlia.store.sqlite import SQLiteStore
        return SQLiteStore(settings.database_path, timeout=settings.timeout_seconds, clock=clock)
    return DocumentStore(settings.data_dir, settings.database_name, clock=clock)


__all__ = [
    # Interfaces
    "LocalStore",
    "PreferenceStore",
    "ExecuteResult",
    # Implementations
    "DocumentStore",
    "JsonFilePreferenceStore",
    "MemoryPreferenceStore",
    "create_local_store",
    "sqlite_available",
    # Statements
    "And",
    "Contains",
    "Delete",
    "Ensure",
    "Eq",
    "Gt",
    "Gte",
    "In",
    "Insert",
    "Lt",
    "Lte",
    "Or",
    "OrderBy",
    "Select",
    "Update",
    "order",
    # Schema and clock
    "Clock",
    "PreferenceKey",
    "SYNCED_TABLES",
    "TABLES",
    "format_timestamp",
    "normalize_timestamp",
    "parse_timestamp",
    # Exceptions
    "EnsureFailedError",
    "IntegrityError",
    "QueryError",
    "StoreError",
    "StoreNotInitializedError",
]
