"""
Sync Package

Remote adapter interfaces, the Google Drive and Google Sheets
adapters, and the engine that reconciles them with the local store.
"""

from cashlia.sync.interface import (
    DocumentCallback,
    DocumentStoreAdapter,
    DriveAdapter,
    RemoteAdapter,
    RemoteFile,
    RemoteNotConfiguredError,
    RemoteUnavailableError,
    Subscription,
    TaskSubscription,
)
from cashlia.sync.google_drive import GoogleDriveAdapter
from cashlia.sync.google_sheets import GoogleSheetsClient, SheetsDocumentStore
from cashlia.sync.engine import (
    MergeOutcome,
    PullReport,
    SyncEngine,
    SyncFailure,
    SyncReport,
)

__all__ = [
    # Interfaces
    "DocumentCallback",
    "DocumentStoreAdapter",
    "DriveAdapter",
    "RemoteAdapter",
    "RemoteFile",
    "Subscription",
    "TaskSubscription",
    # Implementations
    "GoogleDriveAdapter",
    "GoogleSheetsClient",
    "SheetsDocumentStore",
    # Engine
    "MergeOutcome",
    "PullReport",
    "SyncEngine",
    "SyncFailure",
    "SyncReport",
    # Exceptions
    "RemoteNotConfiguredError",
    "RemoteUnavailableError",
]
