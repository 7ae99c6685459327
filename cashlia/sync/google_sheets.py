"""
Google Sheets Document Store

DESIGN DECISION: A spreadsheet doubles as the document database because:
1. Every user already has one (no server to run)
2. A service account can share it across devices
3. Built-in backup (Google's infrastructure)

Each collection is one worksheet; each document is one row:
    id | data (ciphertext) | updated_at | synced_at | sync_status | deleted

TRADEOFFS:
- No push notifications, so subscriptions poll and compare a fingerprint
- No transactions (one row per document keeps writes independent)
- Reads fetch the whole worksheet (fine for a personal ledger)
"""

import asyncio
import hashlib
import json
from typing import Any, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cashlia.config import GoogleSheetsSettings, get_settings
from cashlia.errors import DecryptionError
from cashlia.security import PayloadCipher
from cashlia.store.clock import format_timestamp, utc_now
from cashlia.sync.interface import (
    DocumentCallback,
    DocumentStoreAdapter,
    RemoteNotConfiguredError,
    RemoteUnavailableError,
    Subscription,
    TaskSubscription,
)


logger = structlog.get_logger(__name__)

# Column layout of every collection worksheet
DOCUMENT_COLUMNS = [
    "id",
    "data",
    "updated_at",
    "synced_at",
    "sync_status",
    "deleted",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._sheets: dict[str, gspread.Worksheet] = {}

    @retry(
        retry=retry_if_exception_type(RemoteUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if not self._settings.is_configured:
            raise RemoteNotConfiguredError(
                "Document store needs GOOGLE_SHEETS_CREDENTIALS_PATH and GOOGLE_SHEETS_SPREADSHEET_ID"
            )
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise RemoteNotConfiguredError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except ValueError as e:
                raise RemoteNotConfiguredError(f"Invalid Google credentials: {e}")
            except Exception as e:
                raise RemoteUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise RemoteNotConfiguredError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
            except Exception as e:
                raise RemoteUnavailableError(f"Failed to open spreadsheet: {e}")
        return self._spreadsheet

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet of a collection."""
        if collection not in self._sheets:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(collection)
            except gspread.WorksheetNotFound:
                # Create the sheet with headers
                sheet = spreadsheet.add_worksheet(
                    title=collection,
                    rows=1000,
                    cols=len(DOCUMENT_COLUMNS),
                )
                sheet.append_row(DOCUMENT_COLUMNS)
            self._sheets[collection] = sheet
        return self._sheets[collection]


class SheetsDocumentStore(DocumentStoreAdapter):
    """
    Google Sheets implementation of the document-store remote.

    All gspread calls are blocking, so they run in worker threads.
    """

    name = "document_store"

    def __init__(
        self,
        cipher: PayloadCipher,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval: float = 15.0,
    ):
        self._cipher = cipher
        self._client = client or GoogleSheetsClient()
        self._poll_interval = poll_interval

    async def ensure_ready(self) -> None:
        await asyncio.to_thread(self._client.get_spreadsheet)

    # -------------------------------------------------------------------------
    # Blocking helpers (run in threads)
    # -------------------------------------------------------------------------

    def _read_rows(self, collection: str) -> list[list[str]]:
        try:
            sheet = self._client.get_collection_sheet(collection)
            # Get all data (excluding header)
            return [row for row in sheet.get_all_values()[1:] if row and row[0]]
        except (RemoteNotConfiguredError, RemoteUnavailableError):
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Failed to read collection {collection}: {e}")

    def _write_row(self, collection: str, record_id: str, row: list[str]) -> None:
        try:
            sheet = self._client.get_collection_sheet(collection)
            ids = sheet.col_values(1)

            # Find the row with this document ID (row 1 is the header)
            for idx, value in enumerate(ids[1:], start=2):
                if value == record_id:
                    sheet.update(
                        range_name=f"A{idx}:F{idx}",
                        values=[row],
                        value_input_option="RAW",
                    )
                    return

            sheet.append_row(row, value_input_option="RAW")
        except (RemoteNotConfiguredError, RemoteUnavailableError):
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Failed to write {collection}/{record_id}: {e}")

    @staticmethod
    def _find(rows: list[list[str]], record_id: str) -> Optional[list[str]]:
        for row in rows:
            if row[0] == record_id:
                return row
        return None

    # -------------------------------------------------------------------------
    # Adapter interface
    # -------------------------------------------------------------------------

    async def save(self, collection: str, record_id: str, payload: dict[str, Any]) -> None:
        row = [
            record_id,
            await self._cipher.encrypt_payload(payload),
            str(payload.get("updated_at") or ""),
            format_timestamp(utc_now()),
            "synced",
            "",
        ]
        await asyncio.to_thread(self._write_row, collection, record_id, row)

    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        rows = await asyncio.to_thread(self._read_rows, collection)
        row = self._find(rows, record_id)
        if row is None or _is_deleted(row):
            return None
        return await self._cipher.decrypt_payload(_cell(row, 1))

    async def delete(self, collection: str, record_id: str) -> None:
        rows = await asyncio.to_thread(self._read_rows, collection)
        row = self._find(rows, record_id)
        if row is None:
            return
        marked = [_cell(row, i) for i in range(len(DOCUMENT_COLUMNS))]
        marked[3] = format_timestamp(utc_now())
        marked[5] = "true"
        await asyncio.to_thread(self._write_row, collection, record_id, marked)

    async def subscribe(self, collection: str, callback: DocumentCallback) -> Subscription:
        task = asyncio.create_task(
            self._poll(collection, callback),
            name=f"sheets-subscription-{collection}",
        )
        return TaskSubscription(task)

    async def decrypt_rows(self, collection: str, rows: list[list[str]]) -> list[dict[str, Any]]:
        """Decrypt live rows, skipping deleted and undecryptable ones."""
        documents = []
        for row in rows:
            if _is_deleted(row):
                continue
            try:
                documents.append(await self._cipher.decrypt_payload(_cell(row, 1)))
            except DecryptionError as e:
                logger.warning(
                    "document_decryption_failed",
                    collection=collection,
                    record_id=row[0],
                    error=str(e),
                )
        return documents

    async def _poll(self, collection: str, callback: DocumentCallback) -> None:
        fingerprint = None
        while True:
            try:
                rows = await asyncio.to_thread(self._read_rows, collection)
            except RemoteNotConfiguredError as e:
                logger.error("subscription_stopped", collection=collection, error=str(e))
                return
            except RemoteUnavailableError as e:
                logger.warning("subscription_poll_failed", collection=collection, error=str(e))
            else:
                digest = hashlib.sha256(json.dumps(rows).encode("utf-8")).hexdigest()
                if digest != fingerprint:
                    fingerprint = digest
                    documents = await self.decrypt_rows(collection, rows)
                    try:
                        await callback(documents)
                    except Exception:
                        logger.exception("subscription_callback_failed", collection=collection)
            await asyncio.sleep(self._poll_interval)


def _cell(row: list[str], index: int) -> str:
    try:
        return row[index] if row[index] else ""
    except IndexError:
        return ""


def _is_deleted(row: list[str]) -> bool:
    return _cell(row, 5).lower() == "true"
