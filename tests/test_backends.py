from types import SimpleNamespace

import httpx
import pytest

from conftest import FakeTabularClient
from contacts_sync.backends import JsonSnapshotBackend, SheetsBackend, build_backend
from contacts_sync.blobs import BlobNotFoundError
from contacts_sync.config_loader import load_sync_config
from contacts_sync.errors import BackendUnavailableError
from contacts_sync.models import Contact, HistoryEntry
from contacts_sync.serialization import COLUMNS, HISTORY_COLUMNS
from contacts_sync.sheets import (
    GoogleSheetsClient,
    SheetsRequestError,
    StaticTokenProvider,
    column_letter,
)
from contacts_sync.store import ContactStore


def _contact(contact_id, name, **extra):
    return Contact(id=contact_id, name=name, **extra)


def test_column_letters():
    assert column_letter(0) == "A"
    assert column_letter(21) == "V"
    assert column_letter(26) == "AA"


async def test_sheets_backend_insert_and_load(tabular_client):
    backend = SheetsBackend(tabular_client)
    jane = _contact("1", "Jane", tags=["Music"], history=[HistoryEntry("Intern", "Acme", "2020")])
    await backend.insert(jane)
    await backend.insert(_contact("2", "Bob"))

    assert tabular_client.tabs["Contacts"][0] == COLUMNS
    assert tabular_client.tabs["History"][1] == ["1", "Intern", "Acme", "2020"]
    loaded = await backend.load_all()
    assert loaded == [jane, _contact("2", "Bob")]


async def test_sheets_backend_replace_updates_row_and_appends_history(tabular_client):
    backend = SheetsBackend(tabular_client)
    before = _contact("1", "Jane", title="Manager")
    await backend.insert(before)
    await backend.insert(_contact("2", "Bob"))

    after = before.replace(
        title="Director", history=[HistoryEntry("Manager", "", "2024-01-01")]
    )
    await backend.replace(after, before)

    assert ("update", "Contacts!A2:V2") in tabular_client.calls
    assert len(tabular_client.tabs["History"]) == 2
    loaded = await backend.load_all()
    assert loaded[0] == after
    assert loaded[1].name == "Bob"


async def test_sheets_backend_remove_deletes_the_row(tabular_client):
    backend = SheetsBackend(tabular_client)
    for contact_id in ("1", "2", "3"):
        await backend.insert(_contact(contact_id, f"N{contact_id}"))
    assert await backend.find_row_number("2") == 3
    assert await backend.remove("2")
    assert ("delete", "Contacts", 2, 3) in tabular_client.calls
    assert [c.id for c in await backend.load_all()] == ["1", "3"]
    assert not await backend.remove("missing")


async def test_sheets_backend_remove_drops_history_rows(tabular_client):
    backend = SheetsBackend(tabular_client)
    await backend.insert(
        _contact("1", "Jane", history=[HistoryEntry("Intern", "Acme", "2020")])
    )
    await backend.insert(
        _contact(
            "2",
            "Bob",
            history=[HistoryEntry("Clerk", "Co", "2019"), HistoryEntry("Lead", "Co", "2021")],
        )
    )
    await backend.replace(
        _contact(
            "1",
            "Jane",
            history=[
                HistoryEntry("Intern", "Acme", "2020"),
                HistoryEntry("Analyst", "Acme", "2022"),
            ],
        ),
        _contact("1", "Jane", history=[HistoryEntry("Intern", "Acme", "2020")]),
    )

    assert await backend.remove("2")
    assert ("delete", "History", 2, 4) in tabular_client.calls
    assert [row[0] for row in tabular_client.tabs["History"][1:]] == ["1", "1"]
    assert [len(c.history) for c in await backend.load_all()] == [2]


async def test_sheets_backend_write_all_rewrites_both_tabs(tabular_client):
    backend = SheetsBackend(tabular_client)
    for contact_id in ("1", "2", "3"):
        await backend.insert(
            _contact(contact_id, f"N{contact_id}", history=[HistoryEntry("t", "c", "d")])
        )
    survivor = _contact("1", "N1", history=[HistoryEntry("t", "c", "d")])
    await backend.write_all([survivor])
    assert await backend.load_all() == [survivor]
    assert tabular_client.tabs["History"][1:] == [["1", "t", "c", "d"]]


async def test_sheets_backend_without_history_tab(tabular_client):
    backend = SheetsBackend(tabular_client, history_sheet="")
    await backend.insert(_contact("1", "Jane", history=[HistoryEntry("t", "c", "d")]))
    assert (await backend.load_all())[0].history == []


async def test_sheets_backend_quotes_sheet_names_with_spaces():
    client = FakeTabularClient(
        {"My Contacts": [list(COLUMNS)], "History": [list(HISTORY_COLUMNS)]}
    )
    backend = SheetsBackend(client, sheet_name="My Contacts")
    await backend.insert(_contact("1", "Jane"))
    assert backend.data_range == "'My Contacts'!A2:V"
    assert [c.name for c in await backend.load_all()] == ["Jane"]


async def test_json_backend_crud(blobs):
    backend = JsonSnapshotBackend(blobs, key="data/contacts.json")
    assert await backend.load_all() == []
    await backend.insert(_contact("1", "Jane"))
    await backend.insert(_contact("2", "Bob"))
    await backend.replace(_contact("1", "Jane Doe"), _contact("1", "Jane"))
    assert [c.name for c in await backend.load_all()] == ["Jane Doe", "Bob"]
    assert await backend.remove("2")
    assert not await backend.remove("2")
    assert [c.id for c in await backend.load_all()] == ["1"]
    assert await blobs.exists("data/contacts.json")


async def test_blob_store_guards_keys(blobs):
    with pytest.raises(ValueError):
        await blobs.put("../escape.txt", b"x", content_type="text/plain")
    with pytest.raises(BlobNotFoundError):
        await blobs.get("missing.txt")


def test_build_backend_auto_selects_by_spreadsheet_id(tmp_path, monkeypatch):
    monkeypatch.delenv("CONTACTS_SYNC_SPREADSHEET_ID", raising=False)
    config = load_sync_config(SimpleNamespace(storage_dir=str(tmp_path)))
    assert isinstance(build_backend(config), JsonSnapshotBackend)

    config = load_sync_config(SimpleNamespace(storage_dir=str(tmp_path), spreadsheet_id="sheet-1"))
    backend = build_backend(config)
    assert isinstance(backend, SheetsBackend)
    assert backend.history_sheet == "History"

    config.backend = "parquet"
    with pytest.raises(ValueError):
        build_backend(config)


async def test_missing_credentials_degrade_store_reads(tmp_path, monkeypatch):
    monkeypatch.delenv("GOOGLE_SHEETS_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("CONTACTS_SYNC_SPREADSHEET_ID", raising=False)
    config = load_sync_config(SimpleNamespace(storage_dir=str(tmp_path), backend="sheets"))
    backend = build_backend(config)
    with pytest.raises(BackendUnavailableError):
        await backend.load_all()
    store = ContactStore(backend)
    assert await store.list() == []
    with pytest.raises(BackendUnavailableError):
        await store.save(Contact(name="Jane"))
    await store.aclose()


class _RefreshingTokens:
    def __init__(self):
        self.refreshes = 0

    async def get_access_token(self, *, force_refresh=False):
        if force_refresh:
            self.refreshes += 1
            return "tok-2"
        return "tok-1"


def _client(handler, tokens=None):
    return GoogleSheetsClient(
        spreadsheet_id="sheet-1",
        token_provider=tokens or StaticTokenProvider("tok-1"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def test_sheets_client_reads_values():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"range": "Contacts!A2:V", "values": [["1", "Jane"]]})

    client = _client(handler)
    assert await client.read_range("Contacts!A2:V") == [["1", "Jane"]]
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/v4/spreadsheets/sheet-1/values/Contacts!A2:V"
    assert seen[0].headers["Authorization"] == "Bearer tok-1"


async def test_sheets_client_append_and_update_use_raw_input():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.append_rows("Contacts!A2:V", [["1", "Jane"]])
    await client.update_range("Contacts!A2:V2", [["1", "Jane"]])
    await client.clear_range("Contacts!A2:V")

    append, update, clear = seen
    assert append.method == "POST"
    assert append.url.path.endswith(":append")
    assert append.url.params["valueInputOption"] == "RAW"
    assert append.url.params["insertDataOption"] == "INSERT_ROWS"
    assert update.method == "PUT"
    assert clear.url.path.endswith(":clear")


async def test_sheets_client_delete_rows_resolves_sheet_id():
    seen = []

    def handler(request):
        seen.append(request)
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "sheets": [
                        {"properties": {"title": "History", "sheetId": 7}},
                        {"properties": {"title": "Contacts", "sheetId": 42}},
                    ]
                },
            )
        return httpx.Response(200, json={"replies": [{}]})

    client = _client(handler)
    await client.delete_rows("Contacts", 4, 5)
    body = seen[1].read()
    assert seen[1].url.path.endswith(":batchUpdate")
    assert b'"sheetId":42' in body.replace(b" ", b"")
    assert b'"startIndex":4' in body.replace(b" ", b"")


async def test_sheets_client_refreshes_token_once_on_401():
    tokens = _RefreshingTokens()
    auth_headers = []

    def handler(request):
        auth_headers.append(request.headers["Authorization"])
        if request.headers["Authorization"] == "Bearer tok-1":
            return httpx.Response(401, json={"error": {"message": "expired"}})
        return httpx.Response(200, json={"values": []})

    client = _client(handler, tokens)
    assert await client.read_range("Contacts!A2:V") == []
    assert auth_headers == ["Bearer tok-1", "Bearer tok-2"]
    assert tokens.refreshes == 1


async def test_sheets_client_surfaces_google_error_message():
    def handler(request):
        return httpx.Response(
            403, json={"error": {"message": "The caller does not\n have permission"}}
        )

    client = _client(handler)
    with pytest.raises(SheetsRequestError) as excinfo:
        await client.read_range("Contacts!A2:V")
    assert excinfo.value.status_code == 403
    assert excinfo.value.message == "The caller does not have permission"


async def test_sheets_client_transport_errors_are_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    client = _client(handler)
    with pytest.raises(SheetsRequestError) as excinfo:
        await client.read_range("Contacts!A2:V")
    assert excinfo.value.status_code == 0


if __name__ == "__main__":
    pytest.main(["-q"])
