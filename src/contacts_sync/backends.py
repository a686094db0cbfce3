"""Interchangeable canonical-store adapters.

Both adapters speak the same small contract; ``ContactStore`` owns caching,
merging and derived documents on top of whichever one is injected.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .blobs import BlobNotFoundError, BlobStore, LocalBlobStore, S3BlobStore
from .config_loader import SyncConfig
from .models import Contact, HistoryEntry
from .serialization import (
    COL_COUNT,
    HISTORY_COLUMNS,
    contact_to_row,
    dump_snapshot,
    history_from_rows,
    history_to_rows,
    load_snapshot,
    row_to_contact,
)
from .sheets import GoogleSheetsClient, StaticTokenProvider, TabularClient, column_letter

logger = logging.getLogger(__name__)

SNAPSHOT_CONTENT_TYPE = "application/json"
_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z0-9_]+$")


class ContactBackend(Protocol):
    name: str

    async def load_all(self) -> List[Contact]:
        ...

    async def insert(self, contact: Contact) -> None:
        ...

    async def replace(self, contact: Contact, previous: Contact) -> None:
        ...

    async def remove(self, contact_id: str) -> bool:
        ...

    async def write_all(self, contacts: Sequence[Contact]) -> None:
        ...

    async def aclose(self) -> None:
        ...


def _sheet_ref(sheet_name: str) -> str:
    if _PLAIN_SHEET_NAME.match(sheet_name):
        return sheet_name
    return "'" + sheet_name.replace("'", "''") + "'"


class SheetsBackend:
    """Rows of the 22-column schema on a spreadsheet tab; row 1 is the header.

    Career history lives on a second tab (``contactId, title, company, date``)
    because the row schema has no slot for it. New entries are appended.
    """

    name = "sheets"

    def __init__(
        self,
        client: TabularClient,
        sheet_name: str = "Contacts",
        history_sheet: Optional[str] = "History",
    ) -> None:
        self.client = client
        self.sheet_name = sheet_name
        self.history_sheet = history_sheet or None
        self._last_col = column_letter(COL_COUNT - 1)
        self._history_last_col = column_letter(len(HISTORY_COLUMNS) - 1)

    async def aclose(self) -> None:
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()

    @property
    def data_range(self) -> str:
        return f"{_sheet_ref(self.sheet_name)}!A2:{self._last_col}"

    @property
    def id_column_range(self) -> str:
        return f"{_sheet_ref(self.sheet_name)}!A:A"

    @property
    def history_range(self) -> str:
        return f"{_sheet_ref(self.history_sheet or '')}!A2:{self._history_last_col}"

    def _row_range(self, row_number: int) -> str:
        return f"{_sheet_ref(self.sheet_name)}!A{row_number}:{self._last_col}{row_number}"

    async def _load_history(self) -> Dict[str, List[HistoryEntry]]:
        if not self.history_sheet:
            return {}
        return history_from_rows(await self.client.read_range(self.history_range))

    async def load_all(self) -> List[Contact]:
        rows = await self.client.read_range(self.data_range)
        history = await self._load_history()
        contacts = []
        for row in rows:
            if not row or not str(row[0]).strip():
                continue
            contact_id = str(row[0]).strip()
            contacts.append(row_to_contact(row, history.get(contact_id)))
        return contacts

    async def find_row_number(self, contact_id: str) -> int:
        """1-indexed sheet row holding ``contact_id``, or -1."""
        column = await self.client.read_range(self.id_column_range)
        for index in range(1, len(column)):
            cells = column[index]
            if cells and str(cells[0]).strip() == contact_id:
                return index + 1
        return -1

    async def _append_history(self, contact: Contact, entries: Sequence[HistoryEntry]) -> None:
        if self.history_sheet and entries:
            await self.client.append_rows(self.history_range, history_to_rows(contact, entries))

    async def insert(self, contact: Contact) -> None:
        await self.client.append_rows(self.data_range, [contact_to_row(contact)])
        await self._append_history(contact, contact.history)

    async def replace(self, contact: Contact, previous: Contact) -> None:
        row_number = await self.find_row_number(contact.id)
        if row_number > 0:
            await self.client.update_range(self._row_range(row_number), [contact_to_row(contact)])
        else:
            logger.warning("Row for contact %s vanished; appending instead", contact.id)
            await self.client.append_rows(self.data_range, [contact_to_row(contact)])
        await self._append_history(contact, contact.history[len(previous.history):])

    async def remove(self, contact_id: str) -> bool:
        row_number = await self.find_row_number(contact_id)
        if row_number <= 0:
            return False
        await self.client.delete_rows(self.sheet_name, row_number - 1, row_number)
        await self._remove_history(contact_id)
        return True

    async def _remove_history(self, contact_id: str) -> None:
        if not self.history_sheet:
            return
        rows = await self.client.read_range(self.history_range)
        # 0-based sheet indices; data starts on the second row.
        indices = [
            offset + 1
            for offset, row in enumerate(rows)
            if row and str(row[0]).strip() == contact_id
        ]
        # Bottom-up, one call per run of adjacent rows.
        while indices:
            end = indices.pop() + 1
            start = end - 1
            while indices and indices[-1] == start - 1:
                start = indices.pop()
            await self.client.delete_rows(self.history_sheet, start, end)

    async def write_all(self, contacts: Sequence[Contact]) -> None:
        await self.client.clear_range(self.data_range)
        if contacts:
            await self.client.update_range(
                f"{_sheet_ref(self.sheet_name)}!A2:{self._last_col}{len(contacts) + 1}",
                [contact_to_row(contact) for contact in contacts],
            )
        if self.history_sheet:
            history_rows = [row for contact in contacts for row in history_to_rows(contact)]
            await self.client.clear_range(self.history_range)
            if history_rows:
                await self.client.update_range(
                    f"{_sheet_ref(self.history_sheet)}!A2:"
                    f"{self._history_last_col}{len(history_rows) + 1}",
                    history_rows,
                )


class JsonSnapshotBackend:
    """Whole-set JSON array stored as one blob (object storage or local file)."""

    name = "json"

    def __init__(self, blobs: BlobStore, key: str = "data/contacts.json") -> None:
        self.blobs = blobs
        self.key = key

    async def load_all(self) -> List[Contact]:
        try:
            data = await self.blobs.get(self.key)
        except BlobNotFoundError:
            logger.info("No contact snapshot at %s yet", self.key)
            return []
        return load_snapshot(data)

    async def write_all(self, contacts: Sequence[Contact]) -> None:
        await self.blobs.put(self.key, dump_snapshot(contacts), content_type=SNAPSHOT_CONTENT_TYPE)

    async def aclose(self) -> None:
        return None

    async def insert(self, contact: Contact) -> None:
        contacts = await self.load_all()
        contacts.append(contact)
        await self.write_all(contacts)

    async def replace(self, contact: Contact, previous: Contact) -> None:
        contacts = await self.load_all()
        for index, existing in enumerate(contacts):
            if existing.id == contact.id:
                contacts[index] = contact
                break
        else:
            contacts.append(contact)
        await self.write_all(contacts)

    async def remove(self, contact_id: str) -> bool:
        contacts = await self.load_all()
        kept = [contact for contact in contacts if contact.id != contact_id]
        if len(kept) == len(contacts):
            return False
        await self.write_all(kept)
        return True


def build_blob_store(config: SyncConfig) -> BlobStore:
    """Object storage when a bucket is configured, otherwise the local directory."""
    storage = config.storage
    kind = (storage.blob_store or "auto").lower()
    if kind == "auto":
        kind = "s3" if storage.bucket else "local"
    if kind == "s3":
        logger.info("Using S3 blob store (bucket %s)", storage.bucket)
        return S3BlobStore(
            storage.bucket,
            endpoint_url=storage.endpoint_url,
            region_name=storage.region,
            access_key_id=os.getenv(storage.access_key_env or "", ""),
            secret_access_key=os.getenv(storage.secret_key_env or "", ""),
        )
    if kind == "local":
        return LocalBlobStore(Path(storage.dir))
    raise ValueError(f"Unknown blob store: {storage.blob_store!r}")


def build_backend(config: SyncConfig, blobs: Optional[BlobStore] = None) -> ContactBackend:
    """Choose the canonical backend once, from configuration."""
    backend = (config.backend or "auto").lower()
    if backend == "auto":
        backend = "sheets" if config.sheets.spreadsheet_id else "json"

    if backend == "sheets":
        token = os.getenv(config.sheets.access_token_env or "", "")
        client = GoogleSheetsClient(
            spreadsheet_id=config.sheets.spreadsheet_id,
            token_provider=StaticTokenProvider(token),
            timeout_seconds=config.sheets.timeout_seconds,
        )
        logger.info("Using Google Sheets backend (%s)", config.sheets.sheet_name)
        return SheetsBackend(
            client,
            sheet_name=config.sheets.sheet_name,
            history_sheet=config.sheets.history_sheet,
        )
    if backend == "json":
        logger.info("Using JSON snapshot backend (%s)", config.storage.snapshot_key)
        return JsonSnapshotBackend(
            blobs or build_blob_store(config), key=config.storage.snapshot_key
        )
    raise ValueError(f"Unknown backend: {config.backend!r}")


__all__ = [
    "ContactBackend",
    "JsonSnapshotBackend",
    "SheetsBackend",
    "build_backend",
    "build_blob_store",
]
