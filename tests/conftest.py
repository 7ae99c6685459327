"""
Shared fixtures.

Every store-backed test runs twice: once on SQLite, once on the JSON
document store. Remotes are in-memory fakes; no test touches the network.
"""

from collections import defaultdict
from typing import Any, Optional

import pytest

from cashlia.config import Settings
from cashlia.orchestrator import open_cashbook
from cashlia.security import PayloadCipher
from cashlia.store import DocumentStore, MemoryPreferenceStore
from cashlia.store.sqlite import SQLiteStore
from cashlia.sync import (
    DocumentCallback,
    DocumentStoreAdapter,
    DriveAdapter,
    RemoteFile,
    RemoteNotConfiguredError,
    RemoteUnavailableError,
    Subscription,
)


# =============================================================================
# FAKE REMOTES
# =============================================================================

class FakeDrive(DriveAdapter):
    """Drive stand-in keeping encrypted files in a dict keyed by path."""

    name = "fake_drive"

    def __init__(self):
        self.cipher = PayloadCipher(MemoryPreferenceStore())
        self.files: dict[str, str] = {}
        self.failing: set[str] = set()
        self.configured = True
        self.saves: list[str] = []
        self.on_save = None

    async def ensure_ready(self) -> None:
        if not self.configured:
            raise RemoteNotConfiguredError("Not authenticated with Google Drive")

    async def save(self, collection: str, record_id: str, payload: dict[str, Any]) -> None:
        if payload.get("id") in self.failing:
            raise RemoteUnavailableError("Drive unreachable")
        if self.on_save is not None:
            await self.on_save(payload)
        path = f"{collection}/{record_id}.json"
        self.saves.append(path)
        self.files[path] = await self.cipher.encrypt_payload(payload)

    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        path = f"{collection}/{record_id}.json"
        if path not in self.files:
            return None
        return await self.download(path)

    async def list_files(self, folder_path: str, recursive: bool = True) -> list[RemoteFile]:
        prefix = folder_path.rstrip("/") + "/"
        files = []
        for path in sorted(self.files):
            if not path.startswith(prefix):
                continue
            folder, name = path.rsplit("/", 1)
            if not recursive and folder != folder_path.rstrip("/"):
                continue
            files.append(RemoteFile(file_id=path, name=name, folder_path=folder))
        return files

    async def download(self, file_id: str) -> dict[str, Any]:
        return await self.cipher.decrypt_payload(self.files[file_id])

    async def delete(self, file_id: str) -> None:
        self.files.pop(file_id, None)

    async def remove(self, collection: str, record_id: str) -> None:
        if any(record_id.endswith(f"_{failing}") for failing in self.failing):
            raise RemoteUnavailableError("Drive unreachable")
        await self.delete(f"{collection}/{record_id}.json")

    async def put_remote(self, path: str, payload: dict[str, Any]) -> None:
        """Simulate another device writing a file."""
        self.files[path] = await self.cipher.encrypt_payload(payload)


class FakeSubscription(Subscription):
    def __init__(self):
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._active = False


class FakeDocumentStore(DocumentStoreAdapter):
    """Document store stand-in delivering changes synchronously."""

    name = "fake_document_store"

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = defaultdict(dict)
        self.callbacks: dict[str, DocumentCallback] = {}
        self.subscriptions: dict[str, FakeSubscription] = {}
        self.failing: set[str] = set()

    async def ensure_ready(self) -> None:
        pass

    async def save(self, collection: str, record_id: str, payload: dict[str, Any]) -> None:
        if record_id in self.failing:
            raise RemoteUnavailableError("Document store unreachable")
        self.collections[collection][record_id] = dict(payload)

    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        document = self.collections[collection].get(record_id)
        return dict(document) if document else None

    async def delete(self, collection: str, record_id: str) -> None:
        self.collections[collection].pop(record_id, None)

    async def subscribe(self, collection: str, callback: DocumentCallback) -> Subscription:
        self.callbacks[collection] = callback
        subscription = self.subscriptions[collection] = FakeSubscription()
        await callback(list(self.collections[collection].values()))
        return subscription

    async def put_remote(self, collection: str, document: dict[str, Any]) -> None:
        """Simulate another device writing a document."""
        self.collections[collection][document["id"]] = dict(document)
        subscription = self.subscriptions.get(collection)
        if collection in self.callbacks and subscription is not None and subscription.active:
            await self.callbacks[collection](list(self.collections[collection].values()))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(params=["sqlite", "document"])
async def store(request, tmp_path):
    """An initialized local store of each backend."""
    if request.param == "sqlite":
        local = SQLiteStore(tmp_path / "cashlia_test.sqlite3")
    else:
        local = DocumentStore(tmp_path / "documents", "cashlia_test")
    await local.initialize()
    yield local
    await local.close()


@pytest.fixture
def preferences():
    return MemoryPreferenceStore()


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def document_store():
    return FakeDocumentStore()


@pytest.fixture
async def app(store, preferences, drive, document_store):
    """Fully wired cashbook over the parametrized store."""
    cashbook = await open_cashbook(
        settings=Settings(),
        store=store,
        preferences=preferences,
        drive=drive,
        document_store=document_store,
        configure_logs=False,
    )
    yield cashbook
    cashbook.sync.stop()


@pytest.fixture
async def owner(app):
    """Signed-in user with one business and one book selected."""
    user = await app.users.register("owner@example.com", "9000000001", "secret-1")
    business = await app.businesses.create("Corner Shop")
    book = await app.books.create("Daily Sales")
    return user, business, book
