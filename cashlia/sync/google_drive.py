"""
Google Drive Remote Adapter

Records are stored as small JSON files in a folder tree:
    /<root>/businesses/<business_id>/books/<book_id>/<table>_<id>.json

Each file is an envelope {"data": <ciphertext>, "synced_at": ...,
"sync_status": "synced"}; only the ciphertext carries record content.

DESIGN DECISION: We call the Drive v3 REST API through google-auth's
AuthorizedSession instead of a generated client library. The adapter
only needs a handful of endpoints, and the session handles token
refresh for both service accounts and stored OAuth tokens.

TRADEOFFS:
- One HTTP round trip per folder lookup (folder ids are cached)
- Listing a business walks its folder tree
"""

import asyncio
import json
from typing import Any, Optional

import google.auth.exceptions
import requests
import structlog
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import credentials as oauth_credentials
from google.oauth2 import service_account
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cashlia.config import GoogleDriveSettings, get_settings
from cashlia.security import PayloadCipher
from cashlia.store import PreferenceKey, PreferenceStore
from cashlia.store.clock import format_timestamp, utc_now
from cashlia.sync.interface import (
    DriveAdapter,
    RemoteFile,
    RemoteNotConfiguredError,
    RemoteUnavailableError,
)


logger = structlog.get_logger(__name__)

FILES_URL = "https://www.googleapis.com/drive/v3/files"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SCOPES = ["https://www.googleapis.com/auth/drive.file"]


def _quote(value: str) -> str:
    """Escape a literal for a Drive search query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveAdapter(DriveAdapter):
    """Drive implementation of the object-store remote."""

    name = "google_drive"

    def __init__(
        self,
        preferences: PreferenceStore,
        cipher: PayloadCipher,
        settings: Optional[GoogleDriveSettings] = None,
        session: Optional[AuthorizedSession] = None,
    ):
        self._preferences = preferences
        self._cipher = cipher
        self._settings = settings or get_settings().google_drive
        self._session = session
        self._folder_ids: dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Token storage
    # -------------------------------------------------------------------------

    async def store_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Persist OAuth tokens obtained by the sign-in flow."""
        await self._preferences.set(PreferenceKey.GOOGLE_DRIVE_TOKEN, access_token)
        if refresh_token:
            await self._preferences.set(PreferenceKey.GOOGLE_DRIVE_REFRESH_TOKEN, refresh_token)
        self._session = None

    async def clear_tokens(self) -> None:
        await self._preferences.remove_many(
            PreferenceKey.GOOGLE_DRIVE_TOKEN,
            PreferenceKey.GOOGLE_DRIVE_REFRESH_TOKEN,
        )
        self._session = None
        self._folder_ids.clear()

    async def is_authenticated(self) -> bool:
        if self._settings.credentials_path:
            return True
        return bool(await self._preferences.get(PreferenceKey.GOOGLE_DRIVE_TOKEN))

    async def _credentials(self):
        if self._settings.credentials_path:
            try:
                return service_account.Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
                )
            except FileNotFoundError:
                raise RemoteNotConfiguredError(
                    f"Google Drive credentials file not found: {self._settings.credentials_path}"
                )
            except ValueError as e:
                raise RemoteNotConfiguredError(f"Invalid Google Drive credentials: {e}")

        token = await self._preferences.get(PreferenceKey.GOOGLE_DRIVE_TOKEN)
        if not token:
            raise RemoteNotConfiguredError("Not authenticated with Google Drive")
        return oauth_credentials.Credentials(
            token=token,
            refresh_token=await self._preferences.get(PreferenceKey.GOOGLE_DRIVE_REFRESH_TOKEN),
            token_uri=self._settings.token_uri,
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret,
            scopes=SCOPES,
        )

    async def ensure_ready(self) -> None:
        if self._session is None:
            self._session = AuthorizedSession(await self._credentials())

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(RemoteUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _request(self, method: str, url: str, allow_missing: bool = False, **kwargs) -> Optional[requests.Response]:
        """
        Perform one Drive API call.

        Returns None for a 404 when allow_missing is set.
        """
        try:
            response = self._session.request(method, url, timeout=30, **kwargs)
        except google.auth.exceptions.RefreshError as e:
            raise RemoteNotConfiguredError(f"Google Drive token refresh failed: {e}")
        except (requests.RequestException, google.auth.exceptions.TransportError) as e:
            raise RemoteUnavailableError(f"Google Drive unreachable: {e}")

        if response.status_code == 401:
            raise RemoteNotConfiguredError("Google Drive rejected the stored credentials")
        if response.status_code == 404 and allow_missing:
            return None
        if response.status_code >= 400:
            raise RemoteUnavailableError(
                f"Google Drive API error {response.status_code}: {response.text[:200]}"
            )
        return response

    async def _call(self, method: str, url: str, **kwargs) -> Optional[requests.Response]:
        await self.ensure_ready()
        return await asyncio.to_thread(self._request, method, url, **kwargs)

    # -------------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------------

    async def _find_child(self, name: str, parent_id: str, folder: bool) -> Optional[dict]:
        query = f"name = '{_quote(name)}' and '{_quote(parent_id)}' in parents and trashed = false"
        if folder:
            query += f" and mimeType = '{FOLDER_MIME_TYPE}'"
        response = await self._call("GET", FILES_URL, params={
            "q": query,
            "fields": "files(id, name, mimeType, modifiedTime)",
            "spaces": "drive",
        })
        files = response.json().get("files", [])
        return files[0] if files else None

    async def _folder_id(self, folder_path: str, create: bool) -> Optional[str]:
        """Resolve a logical folder path, creating missing folders if asked."""
        parts = [part for part in folder_path.split("/") if part]
        parent_id, walked = "root", ""
        for part in parts:
            walked += f"/{part}"
            if walked in self._folder_ids:
                parent_id = self._folder_ids[walked]
                continue
            found = await self._find_child(part, parent_id, folder=True)
            if found is None:
                if not create:
                    return None
                response = await self._call("POST", FILES_URL, params={"fields": "id"}, json={
                    "name": part,
                    "mimeType": FOLDER_MIME_TYPE,
                    "parents": [parent_id],
                })
                found = response.json()
                logger.info("drive_folder_created", path=walked)
            parent_id = self._folder_ids[walked] = found["id"]
        return parent_id

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def save(self, collection: str, record_id: str, payload: dict[str, Any]) -> None:
        folder_id = await self._folder_id(collection, create=True)
        name = f"{record_id}.json"
        envelope = json.dumps({
            "data": await self._cipher.encrypt_payload(payload),
            "synced_at": format_timestamp(utc_now()),
            "sync_status": "synced",
        })

        existing = await self._find_child(name, folder_id, folder=False)
        if existing is None:
            response = await self._call("POST", FILES_URL, params={"fields": "id"}, json={
                "name": name,
                "parents": [folder_id],
                "mimeType": "application/json",
            })
            file_id = response.json()["id"]
        else:
            file_id = existing["id"]

        await self._call(
            "PATCH",
            f"{UPLOAD_URL}/{file_id}",
            params={"uploadType": "media"},
            data=envelope.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )

    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        folder_id = await self._folder_id(collection, create=False)
        if folder_id is None:
            return None
        existing = await self._find_child(f"{record_id}.json", folder_id, folder=False)
        if existing is None:
            return None
        return await self.download(existing["id"])

    async def list_files(self, folder_path: str, recursive: bool = True) -> list[RemoteFile]:
        folder_id = await self._folder_id(folder_path, create=False)
        if folder_id is None:
            return []
        return await self._list_children(folder_id, folder_path.rstrip("/"), recursive)

    async def _list_children(self, folder_id: str, folder_path: str, recursive: bool) -> list[RemoteFile]:
        files, page_token = [], None
        while True:
            params = {
                "q": f"'{_quote(folder_id)}' in parents and trashed = false",
                "fields": "nextPageToken, files(id, name, mimeType, modifiedTime)",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self._call("GET", FILES_URL, params=params)
            body = response.json()
            for item in body.get("files", []):
                if item.get("mimeType") == FOLDER_MIME_TYPE:
                    child_path = f"{folder_path}/{item['name']}"
                    self._folder_ids[child_path] = item["id"]
                    if recursive:
                        files.extend(await self._list_children(item["id"], child_path, True))
                elif item["name"].endswith(".json"):
                    files.append(RemoteFile(
                        file_id=item["id"],
                        name=item["name"],
                        folder_path=folder_path,
                        modified_time=item.get("modifiedTime"),
                    ))
            page_token = body.get("nextPageToken")
            if not page_token:
                return files

    async def download(self, file_id: str) -> dict[str, Any]:
        response = await self._call("GET", f"{FILES_URL}/{file_id}", params={"alt": "media"})
        try:
            envelope = json.loads(response.text)
        except json.JSONDecodeError as e:
            raise RemoteUnavailableError(f"Drive file {file_id} is not a sync envelope") from e
        return await self._cipher.decrypt_payload(envelope.get("data", ""))

    async def delete(self, file_id: str) -> None:
        await self._call("DELETE", f"{FILES_URL}/{file_id}", allow_missing=True)

    async def remove(self, collection: str, record_id: str) -> None:
        folder_id = await self._folder_id(collection, create=False)
        if folder_id is None:
            return
        existing = await self._find_child(f"{record_id}.json", folder_id, folder=False)
        if existing is not None:
            await self.delete(existing["id"])
            logger.info("drive_file_removed", collection=collection, record_id=record_id)
