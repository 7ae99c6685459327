"""
Preference Store

Small persisted string key/value store for per-install state: the
current business/book selection, the session, the sync method, the
encryption key and remote tokens.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from cashlia.store.interface import StoreError


class PreferenceKey:
    """Well-known preference keys."""
    CURRENT_BUSINESS_ID = "current_business_id"
    CURRENT_BOOK_ID = "current_book_id"
    SYNC_METHOD = "sync_method"
    ENCRYPTION_KEY = "encryption_key"
    USER_SESSION = "user_session"
    GOOGLE_DRIVE_TOKEN = "google_drive_token"
    GOOGLE_DRIVE_REFRESH_TOKEN = "google_drive_refresh_token"
    PENDING_INVITATION = "pending_invitation"


class PreferenceStore(ABC):
    """Abstract interface for preference storage."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    async def remove_many(self, *keys: str) -> None:
        for key in keys:
            await self.remove(key)


class MemoryPreferenceStore(PreferenceStore):
    """Preferences held in a dict. Used in tests and ephemeral sessions."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = str(value)

    async def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFilePreferenceStore(PreferenceStore):
    """
    Preferences persisted as one JSON object on disk.

    The file is loaded on first access and rewritten atomically on
    every change.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._values: Optional[dict[str, str]] = None
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if self._values is None:
            if self._path.exists():
                try:
                    self._values = json.loads(self._path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    raise StoreError(f"Unreadable preference file {self._path}: {e}") from e
            else:
                self._values = {}
        return self._values

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            temp.write_text(json.dumps(self._values, indent=2), encoding="utf-8")
            os.replace(temp, self._path)
        except OSError as e:
            raise StoreError(f"Failed to write preference file {self._path}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._load()[key] = str(value)
            self._save()

    async def remove(self, key: str) -> None:
        async with self._lock:
            values = self._load()
            if key in values:
                del values[key]
                self._save()
