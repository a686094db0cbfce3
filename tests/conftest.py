import re
from typing import Dict, List

import pytest

from contacts_sync.blobs import LocalBlobStore
from contacts_sync.documents import ArtifactSync
from contacts_sync.serialization import COLUMNS, HISTORY_COLUMNS

RANGE_RE = re.compile(
    r"^(?P<sheet>'(?:[^']|'')+'|[^!]+)!(?P<c1>[A-Z]+)(?P<r1>\d*):(?P<c2>[A-Z]+)(?P<r2>\d*)$"
)


def _col_index(letters: str) -> int:
    index = 0
    for ch in letters:
        index = index * 26 + (ord(ch) - 64)
    return index - 1


class FakeTabularClient:
    """In-memory spreadsheet honouring the A1 ranges the Sheets backend uses."""

    def __init__(self, tabs: Dict[str, List[List[str]]] = None):
        self.tabs = tabs or {
            "Contacts": [list(COLUMNS)],
            "History": [list(HISTORY_COLUMNS)],
        }
        self.calls = []

    def _parse(self, range_):
        match = RANGE_RE.match(range_)
        assert match, range_
        sheet = match.group("sheet")
        if sheet.startswith("'"):
            sheet = sheet[1:-1].replace("''", "'")
        first_row = int(match.group("r1") or 1) - 1
        last_row = int(match.group("r2")) if match.group("r2") else None
        return (
            self.tabs.setdefault(sheet, []),
            first_row,
            last_row,
            _col_index(match.group("c1")),
            _col_index(match.group("c2")) + 1,
        )

    async def read_range(self, range_):
        self.calls.append(("read", range_))
        tab, first, last, c1, c2 = self._parse(range_)
        rows = []
        for row in tab[first:last]:
            cells = list(row[c1:c2])
            while cells and cells[-1] == "":
                cells.pop()
            rows.append(cells)
        while rows and not rows[-1]:
            rows.pop()
        return rows

    async def update_range(self, range_, rows):
        self.calls.append(("update", range_))
        tab, first, _, c1, _ = self._parse(range_)
        for offset, values in enumerate(rows):
            index = first + offset
            while len(tab) <= index:
                tab.append([])
            row = tab[index]
            while len(row) < c1 + len(values):
                row.append("")
            row[c1 : c1 + len(values)] = [str(v) for v in values]

    async def append_rows(self, range_, rows):
        self.calls.append(("append", range_))
        tab, _, _, _, _ = self._parse(range_)
        while tab and not any(tab[-1]):
            tab.pop()
        for values in rows:
            tab.append([str(v) for v in values])

    async def clear_range(self, range_):
        self.calls.append(("clear", range_))
        tab, first, last, c1, c2 = self._parse(range_)
        for row in tab[first:last]:
            for index in range(c1, min(c2, len(row))):
                row[index] = ""
        while len(tab) > 1 and not any(tab[-1]):
            tab.pop()

    async def delete_rows(self, sheet_name, start_index, end_index):
        self.calls.append(("delete", sheet_name, start_index, end_index))
        del self.tabs[sheet_name][start_index:end_index]


class ReadOnlyBlobStore(LocalBlobStore):
    async def put(self, key, data, *, content_type):
        raise OSError("read-only file system")


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def tabular_client():
    return FakeTabularClient()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "storage")


@pytest.fixture
def artifacts(blobs):
    return ArtifactSync(blobs, prefix="Cards/")


@pytest.fixture
def clock():
    return FakeClock()
