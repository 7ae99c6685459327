"""
Abstract Remote Adapter Interface

DESIGN DECISION: The sync engine talks to remotes only through these
interfaces. This allows us to:
1. Offer several backends (Drive files, a document database)
2. Use in-memory fakes for testing
3. Keep merge logic independent of any vendor API

Adapters encrypt before anything leaves the device and decrypt on the
way back. Failures are split in two so the engine can decide what to
do: RemoteNotConfiguredError needs the user, RemoteUnavailableError is
worth retrying.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from cashlia.errors import ConfigurationError, TransientSyncError


DocumentCallback = Callable[[list[dict[str, Any]]], Awaitable[None]]


class RemoteFile(BaseModel):
    """A file listed from an object-store remote."""

    file_id: str
    name: str
    folder_path: str
    modified_time: Optional[str] = None


class Subscription(ABC):
    """Handle of a standing remote subscription."""

    @property
    @abstractmethod
    def active(self) -> bool:
        pass

    @abstractmethod
    def cancel(self) -> None:
        pass


class TaskSubscription(Subscription):
    """Subscription backed by a polling asyncio task."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def task(self) -> asyncio.Task:
        return self._task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        self._task.cancel()


class RemoteAdapter(ABC):
    """
    Abstract interface shared by all remote backends.

    A collection is the adapter's grouping unit: a folder path for
    object stores, a table name for document stores.
    """

    name: str = "remote"

    @abstractmethod
    async def ensure_ready(self) -> None:
        """
        Verify the remote can be used.

        Raises:
            RemoteNotConfiguredError: If credentials or the target are missing
            RemoteUnavailableError: If the remote cannot be reached
        """
        pass

    @abstractmethod
    async def save(self, collection: str, record_id: str, payload: dict[str, Any]) -> None:
        """
        Encrypt and store one record, tagged as synced with a server timestamp.

        Args:
            collection: Folder path or collection name
            record_id: Identifier of the record inside the collection
            payload: The record's columns

        Raises:
            RemoteUnavailableError: If the write failed
        """
        pass

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        """
        Fetch and decrypt one record.

        Returns:
            The record's columns, or None if the remote has no such record

        Raises:
            DecryptionError: If the stored payload cannot be decrypted
        """
        pass

    @abstractmethod
    async def remove(self, collection: str, record_id: str) -> None:
        """
        Delete one record by the address save() wrote it under.

        A record the remote does not have is ignored.

        Raises:
            RemoteUnavailableError: If the delete failed
        """
        pass


class DriveAdapter(RemoteAdapter):
    """Object-store remote addressed by folder paths."""

    @abstractmethod
    async def list_files(self, folder_path: str, recursive: bool = True) -> list[RemoteFile]:
        """
        List record files under a folder.

        Returns:
            Files found, or an empty list if the folder does not exist
        """
        pass

    @abstractmethod
    async def download(self, file_id: str) -> dict[str, Any]:
        """Fetch and decrypt one listed file."""
        pass

    @abstractmethod
    async def delete(self, file_id: str) -> None:
        pass


class DocumentStoreAdapter(RemoteAdapter):
    """Document-database remote with change subscriptions."""

    @abstractmethod
    async def subscribe(self, collection: str, callback: DocumentCallback) -> Subscription:
        """
        Start delivering the collection's decrypted documents.

        The callback receives the full document list whenever the
        collection changes, starting with one delivery right away.
        Documents that fail to decrypt are skipped and logged.
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        """Mark a document deleted."""
        pass

    async def remove(self, collection: str, record_id: str) -> None:
        await self.delete(collection, record_id)


class RemoteNotConfiguredError(ConfigurationError):
    """Remote lacks credentials, tokens or a target. Needs user action."""
    pass


class RemoteUnavailableError(TransientSyncError):
    """Remote could not be reached or refused the request. Retryable."""
    pass
