"""
Pytest configuration for tests.

Points configuration at a throwaway data directory and an in-memory SQLite
database BEFORE any prayer_wall imports, and provides:

- FakeSpreadsheet / FakeWorksheet: in-memory stand-ins for gspread objects
- FakeClock: a settable clock injected into services
- storage: a fixture parametrized over every backend adapter (PostgreSQL
  only when PRAYER_WALL_TEST_POSTGRES_URL is set)
"""
import os
import re
import tempfile
from datetime import datetime, timedelta

import gspread
import pytest

os.environ["PRAYER_WALL_DATA_DIR"] = tempfile.mkdtemp(prefix="prayer-wall-tests-")
os.environ["PRAYER_WALL_BACKEND"] = "sqlite"
os.environ["PRAYER_WALL_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["PRAYER_WALL_IP_SALT"] = "test-salt"
for _var in ("DATABASE_URL", "ADMIN_USERNAME", "ADMIN_PASSWORD", "GOOGLE_SHEETS_ID"):
    os.environ.pop(_var, None)

from prayer_wall.config import clear_config_cache  # noqa: E402
from prayer_wall.storage import reset_storage  # noqa: E402

POSTGRES_URL = os.environ.get("PRAYER_WALL_TEST_POSTGRES_URL")

DAY0 = datetime(2024, 3, 1, 9, 0, 0)


# ── Fake gspread ─────────────────────────────────────────────────────


_CELL_RE = re.compile(r"^([A-Z]+)(\d+)$")


def _row_of(cell: str) -> int:
    return int(_CELL_RE.match(cell).group(2))


class FakeWorksheet:
    """Grid of strings supporting the calls the sheets adapter makes."""

    def __init__(self, title: str):
        self.title = title
        self.rows = []
        self.calls = []

    def _is_blank(self, row):
        return not any(str(cell).strip() for cell in row)

    def row_values(self, index):
        if index > len(self.rows):
            return []
        row = list(self.rows[index - 1])
        while row and row[-1] == "":
            row.pop()
        return row

    def get_all_values(self):
        rows = [list(row) for row in self.rows]
        while rows and self._is_blank(rows[-1]):
            rows.pop()
        width = max((len(row) for row in rows), default=0)
        return [row + [""] * (width - len(row)) for row in rows]

    def update(self, range_name=None, values=None, value_input_option=None):
        self.calls.append(("update", range_name, len(values)))
        start = _row_of(range_name.split(":")[0])
        for offset, value in enumerate(values):
            index = start - 1 + offset
            while len(self.rows) <= index:
                self.rows.append([])
            self.rows[index] = [str(v) for v in value]

    def append_rows(self, values, value_input_option=None, insert_data_option=None, table_range=None):
        self.calls.append(("append_rows", len(values)))
        last = len(self.rows)
        while last > 0 and self._is_blank(self.rows[last - 1]):
            last -= 1
        for offset, value in enumerate(values):
            index = last + offset
            if index < len(self.rows):
                self.rows[index] = [str(v) for v in value]
            else:
                self.rows.append([str(v) for v in value])

    def data_rows(self):
        """Non-blank rows below the header (test helper)."""
        return [row for row in self.get_all_values()[1:] if not self._is_blank(row)]


class FakeSpreadsheet:
    """Spreadsheet holding FakeWorksheets by title."""

    def __init__(self, title: str = "Prayer Wall Test"):
        self.title = title
        self.worksheets = {}

    def worksheet(self, title):
        if title not in self.worksheets:
            raise gspread.exceptions.WorksheetNotFound(title)
        return self.worksheets[title]

    def add_worksheet(self, title, rows=1000, cols=26):
        sheet = FakeWorksheet(title)
        self.worksheets[title] = sheet
        return sheet


class FakeClock:
    """Callable clock returning a settable naive UTC time."""

    def __init__(self, now: datetime = DAY0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def fresh_config():
    """Reload configuration and drop the storage singleton around every test."""
    clear_config_cache()
    reset_storage()
    yield
    clear_config_cache()
    reset_storage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def spreadsheet():
    return FakeSpreadsheet()


def _make_sqlite():
    from prayer_wall.storage.sql import SqliteStorage
    storage = SqliteStorage("sqlite:///:memory:")
    storage.init()
    return storage


def _make_sheets(spreadsheet):
    from prayer_wall.storage.sheets import SheetsStorage
    storage = SheetsStorage(spreadsheet=spreadsheet)
    storage.init()
    return storage


def _make_postgres():
    from prayer_wall import database
    from prayer_wall.storage.sql import PostgresStorage
    storage = PostgresStorage(POSTGRES_URL)
    storage.init()
    database.drop_db(storage.engine)
    database.init_db(storage.engine)
    return storage


BACKENDS = ["sqlite", "sheets"] + (["postgres"] if POSTGRES_URL else [])


@pytest.fixture(params=BACKENDS)
def storage(request, spreadsheet):
    """Every storage adapter, freshly initialized and empty."""
    if request.param == "sqlite":
        backend = _make_sqlite()
    elif request.param == "sheets":
        backend = _make_sheets(spreadsheet)
    else:
        backend = _make_postgres()
    yield backend
    if hasattr(backend, "dispose"):
        backend.dispose()


@pytest.fixture
def sqlite_storage():
    backend = _make_sqlite()
    yield backend
    backend.dispose()


@pytest.fixture
def sheets_storage(spreadsheet):
    return _make_sheets(spreadsheet)
