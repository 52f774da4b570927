"""
Google Sheets backend adapter.

The spreadsheet offers whole-range reads and writes only: no query
language, no transactions, no conditional update. This adapter emulates the
StoragePort on top of that:

- Each collection is a worksheet tab (PENDING, APPROVED, EXPIRED, REJECTED,
  ADMINS, LOGS) with a header row.
- Filtering, sorting and id matching happen in process after reading the
  whole tab.
- Updates rewrite the whole data range of the tab. Moves rewrite the source
  tab and then append the row to the destination tab.
- Expiry is swept lazily: before any read or write that touches the
  approved/expired tabs, rows whose expires_at has passed are moved from
  APPROVED to EXPIRED. The row keeps status APPROVED; the EXPIRED tab is a
  placement, the timestamp is the source of truth.
- Ids are derived from time.time_ns() because there is no autoincrement.

Known limitations, accepted for single-moderator use:

- A move is two API calls (rewrite source, append destination). A crash
  between them loses the row. An append that timed out after reaching
  Google and is retried by the caller duplicates it.
- All calls are serialised by a per-process lock. Two processes writing
  the same tab can still lose each other's updates.
"""

import functools
import json
import logging
import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import gspread
import requests
from google.auth import exceptions as google_auth_exceptions
from google.oauth2.service_account import Credentials

from prayer_wall.exceptions import BackendUnavailable, ValidationError
from prayer_wall.records import (
    DEFAULT_DURATION_DAYS,
    AdminRecord,
    AuditRecord,
    EntryRecord,
)
from prayer_wall.storage.base import (
    APPROVED,
    APPROVED_ALL,
    ENTRY_COLLECTIONS,
    EXPIRED,
    LIST_ORDER,
    LISTABLE_COLLECTIONS,
    PENDING,
    REJECTED,
    EntryMutator,
    StoragePort,
    validate_collection,
)

logger = logging.getLogger(__name__)

SCOPE = ["https://www.googleapis.com/auth/spreadsheets"]

ENTRY_HEADERS = [
    "id",
    "display_name",
    "content",
    "status",
    "created_at",
    "approved_at",
    "approved_by",
    "expires_at",
    "duration_days",
    "submitter_token",
]

ADMIN_HEADERS = [
    "id",
    "username",
    "password_hash",
    "created_at",
]

LOG_HEADERS = [
    "id",
    "event_type",
    "entry_id",
    "admin_username",
    "submitter_token",
    "details",
    "created_at",
]

TAB_HEADERS = {
    PENDING: ENTRY_HEADERS,
    APPROVED: ENTRY_HEADERS,
    EXPIRED: ENTRY_HEADERS,
    REJECTED: ENTRY_HEADERS,
    "admins": ADMIN_HEADERS,
    "logs": LOG_HEADERS,
}

_DATETIME_FIELDS = ("created_at", "approved_at", "expires_at")


def _column_letter(index: int) -> str:
    """1-based column index to A1 letters (1 -> A, 27 -> AA)."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def _parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value)) if isinstance(value, float) else int(str(value).strip())
    except ValueError:
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp cell into a naive UTC datetime."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable timestamp in spreadsheet: %r", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def entry_from_row(row: Dict[str, str]) -> EntryRecord:
    duration = _parse_int(row.get("duration_days"))
    return EntryRecord(
        id=_parse_int(row.get("id")),
        display_name=row.get("display_name") or None,
        content=row.get("content") or "",
        status=row.get("status") or "PENDING",
        created_at=_parse_datetime(row.get("created_at")),
        approved_at=_parse_datetime(row.get("approved_at")),
        approved_by=row.get("approved_by") or None,
        expires_at=_parse_datetime(row.get("expires_at")),
        duration_days=duration if duration and duration > 0 else DEFAULT_DURATION_DAYS,
        submitter_token=row.get("submitter_token") or None,
    )


def entry_to_row(record: EntryRecord) -> Dict[str, str]:
    return {name: _cell(getattr(record, name)) for name in ENTRY_HEADERS}


def admin_from_row(row: Dict[str, str]) -> AdminRecord:
    return AdminRecord(
        id=_parse_int(row.get("id")),
        username=row.get("username") or "",
        password_hash=row.get("password_hash") or "",
        created_at=_parse_datetime(row.get("created_at")),
    )


def audit_from_row(row: Dict[str, str]) -> AuditRecord:
    return AuditRecord(
        id=_parse_int(row.get("id")),
        event_type=row.get("event_type") or "",
        entry_id=_parse_int(row.get("entry_id")),
        admin_username=row.get("admin_username") or None,
        submitter_token=row.get("submitter_token") or None,
        details=row.get("details") or None,
        created_at=_parse_datetime(row.get("created_at")),
    )


def sort_entries(records: List[EntryRecord], collection: str) -> List[EntryRecord]:
    """Order a collection the way the SQL adapters do (missing values last)."""
    field, descending = LIST_ORDER[collection]

    def key(record):
        value = getattr(record, field)
        present = value is not None
        return (present if descending else not present, value or datetime.min, record.id or 0)

    return sorted(records, key=key, reverse=descending)


def credentials_info_from_config(sheets_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build service account info from config.

    Accepts either the full service account JSON (GOOGLE_SHEET_CREDENTIALS)
    or just the client email and private key.
    """
    if sheets_config.get("credentials_json"):
        return json.loads(sheets_config["credentials_json"])

    email = sheets_config.get("service_account_email")
    key = sheets_config.get("service_account_private_key")
    if not email or not key:
        raise EnvironmentError(
            "Missing Google Sheets credentials. Set GOOGLE_SHEETS_ID, GOOGLE_SERVICE_ACCOUNT_EMAIL, "
            "GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY (or GOOGLE_SHEET_CREDENTIALS)."
        )
    return {
        "type": "service_account",
        "client_email": email,
        "private_key": key,
        "token_uri": "https://oauth2.googleapis.com/token",
    }


def _sheet_call(method):
    """Serialise the call on the adapter lock and translate connectivity errors."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            try:
                return method(self, *args, **kwargs)
            except (
                gspread.exceptions.APIError,
                requests.exceptions.RequestException,
                google_auth_exceptions.TransportError,
                google_auth_exceptions.RefreshError,
            ) as e:
                logger.error("Google Sheets unavailable during %s: %s", method.__name__, e)
                raise BackendUnavailable("Google Sheets unavailable") from e
    return wrapper


class SheetsStorage(StoragePort):
    """StoragePort over a Google spreadsheet, one worksheet tab per collection."""

    name = "sheets"

    def __init__(
        self,
        spreadsheet_id: Optional[str] = None,
        credentials_info: Optional[Dict[str, Any]] = None,
        tabs: Optional[Dict[str, str]] = None,
        spreadsheet=None,
    ):
        """
        Args:
            spreadsheet_id: Key of the spreadsheet to open
            credentials_info: Service account info dict
            tabs: Worksheet titles keyed by collection ("pending", ..., "admins", "logs")
            spreadsheet: An already opened gspread Spreadsheet (used in tests)
        """
        if spreadsheet is None and not spreadsheet_id:
            raise EnvironmentError("GOOGLE_SHEETS_ID is not set.")
        self.spreadsheet_id = spreadsheet_id
        self._credentials_info = credentials_info
        self._spreadsheet = spreadsheet
        self.tabs = {
            PENDING: "PENDING",
            APPROVED: "APPROVED",
            EXPIRED: "EXPIRED",
            REJECTED: "REJECTED",
            "admins": "ADMINS",
            "logs": "LOGS",
        }
        if tabs:
            self.tabs.update(tabs)
        self._worksheets: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._last_id = 0

    @property
    def spreadsheet(self):
        """Open the spreadsheet lazily with service account credentials."""
        if self._spreadsheet is None:
            if not self._credentials_info:
                raise EnvironmentError("Google service account credentials are not configured.")
            credentials = Credentials.from_service_account_info(self._credentials_info, scopes=SCOPE)
            client = gspread.authorize(credentials)
            self._spreadsheet = client.open_by_key(self.spreadsheet_id)
        return self._spreadsheet

    # ── Low-level range helpers ─────────────────────────────────────

    def _next_id(self) -> int:
        """Microsecond timestamp, forced strictly increasing within this process."""
        candidate = time.time_ns() // 1000
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate

    def _worksheet(self, key: str):
        if key in self._worksheets:
            return self._worksheets[key]

        title = self.tabs[key]
        headers = TAB_HEADERS[key]
        try:
            worksheet = self.spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            logger.info("Creating worksheet %s", title)
            worksheet = self.spreadsheet.add_worksheet(title=title, rows=1000, cols=len(headers))

        existing = worksheet.row_values(1)
        if not existing:
            worksheet.update(range_name="A1", values=[headers], value_input_option="RAW")
        elif existing[:len(headers)] != headers:
            raise ValueError(f"Worksheet {title} has unexpected headers: {existing}")

        self._worksheets[key] = worksheet
        return worksheet

    def _read(self, key: str) -> List[Dict[str, str]]:
        headers = TAB_HEADERS[key]
        values = self._worksheet(key).get_all_values()
        rows = []
        for raw in values[1:]:
            if not any(cell.strip() for cell in raw if isinstance(cell, str)):
                continue  # blank padding left by a shrinking rewrite
            rows.append({h: (raw[i] if i < len(raw) else "") for i, h in enumerate(headers)})
        return rows

    def _overwrite(self, key: str, rows: List[Dict[str, str]], previous_count: int) -> None:
        """
        Rewrite the whole data range in one call.

        Blank rows pad the range up to previous_count so rows that moved out
        do not linger below the new end of the data.
        """
        headers = TAB_HEADERS[key]
        values = [[row.get(h, "") for h in headers] for row in rows]
        values.extend([[""] * len(headers)] * max(previous_count - len(rows), 0))
        if not values:
            return
        last_column = _column_letter(len(headers))
        self._worksheet(key).update(
            range_name=f"A2:{last_column}{len(values) + 1}",
            values=values,
            value_input_option="RAW",
        )

    def _append(self, key: str, rows: List[Dict[str, str]]) -> None:
        if not rows:
            return
        headers = TAB_HEADERS[key]
        self._worksheet(key).append_rows(
            [[row.get(h, "") for h in headers] for row in rows],
            value_input_option="RAW",
            insert_data_option="INSERT_ROWS",
            table_range="A1",
        )

    def _read_entries(self, collection: str, now: datetime) -> List[Dict[str, str]]:
        """Read an entry tab, sweeping first when it holds approved rows."""
        if collection == APPROVED:
            return self._sweep(now)
        if collection == EXPIRED:
            self._sweep(now)
        return self._read(collection)

    def _sweep(self, now: datetime) -> List[Dict[str, str]]:
        """
        Move expired rows from the APPROVED tab to the EXPIRED tab.

        Returns the rows still in the APPROVED tab.
        """
        rows = self._read(APPROVED)
        active, expired = [], []
        for row in rows:
            if entry_from_row(row).is_expired(now):
                expired.append(row)
            else:
                active.append(row)
        if expired:
            logger.info("Sweeping %d expired entries out of %s", len(expired), self.tabs[APPROVED])
            self._overwrite(APPROVED, active, len(rows))
            self._append(EXPIRED, expired)
        return active

    @staticmethod
    def _find(rows: List[Dict[str, str]], entry_id: int) -> int:
        for index, row in enumerate(rows):
            if _parse_int(row.get("id")) == entry_id:
                return index
        return -1

    # ── StoragePort ─────────────────────────────────────────────────

    @_sheet_call
    def init(self) -> None:
        for key in TAB_HEADERS:
            self._worksheet(key)

    def check_connection(self) -> dict:
        try:
            with self._lock:
                title = self.spreadsheet.title
            return {"status": "connected", "type": "sheets", "spreadsheet": title}
        except Exception as e:
            return {"status": "error", "error": str(e)}

    @_sheet_call
    def create_entry(self, record: EntryRecord) -> int:
        entry_id = self._next_id()
        self._append(PENDING, [entry_to_row(replace(record, id=entry_id))])
        return entry_id

    @_sheet_call
    def get_entry(self, entry_id: int) -> Optional[EntryRecord]:
        for collection in ENTRY_COLLECTIONS:
            rows = self._read(collection)
            index = self._find(rows, entry_id)
            if index != -1:
                return entry_from_row(rows[index])
        return None

    @_sheet_call
    def list_entries(self, collection: str, now: datetime) -> List[EntryRecord]:
        validate_collection(collection, LISTABLE_COLLECTIONS)
        if collection == APPROVED_ALL:
            rows = self._sweep(now) + self._read(EXPIRED)
        else:
            rows = self._read_entries(collection, now)
        records = [entry_from_row(row) for row in rows]
        if collection == APPROVED:
            records = [r for r in records if r.is_visible(now)]
        return sort_entries(records, collection)

    @_sheet_call
    def update_entry(self, entry_id: int, collection: str, mutator: EntryMutator,
                     now: datetime) -> bool:
        validate_collection(collection)
        rows = self._read_entries(collection, now)
        index = self._find(rows, entry_id)
        if index == -1:
            return False
        record = entry_from_row(rows[index])
        status = record.status
        mutator(record)
        if record.status != status:
            raise ValueError("update_entry mutators must not change status; use move_entry")
        record.id = entry_id
        rows[index] = entry_to_row(record)
        self._overwrite(collection, rows, len(rows))
        return True

    @_sheet_call
    def move_entry(self, entry_id: int, from_collections: Sequence[str], to_collection: str,
                   mutator: EntryMutator, now: datetime) -> Optional[EntryRecord]:
        validate_collection(to_collection)
        for collection in from_collections:
            validate_collection(collection)
            rows = self._read_entries(collection, now)
            index = self._find(rows, entry_id)
            if index == -1:
                continue
            record = entry_from_row(rows.pop(index))
            mutator(record)
            record.id = entry_id
            # Not atomic: see module docstring.
            self._overwrite(collection, rows, len(rows) + 1)
            self._append(to_collection, [entry_to_row(record)])
            return record
        return None

    @_sheet_call
    def move_all(self, from_collection: str, to_collection: str, mutator: EntryMutator,
                 now: datetime) -> List[EntryRecord]:
        validate_collection(from_collection)
        validate_collection(to_collection)
        rows = self._read_entries(from_collection, now)
        if not rows:
            return []
        moved = []
        for record in sort_entries([entry_from_row(row) for row in rows], from_collection):
            entry_id = record.id
            mutator(record)
            record.id = entry_id
            moved.append(record)
        self._overwrite(from_collection, [], len(rows))
        self._append(to_collection, [entry_to_row(record) for record in moved])
        return moved

    @_sheet_call
    def count_recent_by_submitter(self, submitter_token: str, since: datetime) -> int:
        if not submitter_token:
            return 0
        count = 0
        for collection in ENTRY_COLLECTIONS:
            for row in self._read(collection):
                if row.get("submitter_token") != submitter_token:
                    continue
                created_at = _parse_datetime(row.get("created_at"))
                if created_at and created_at > since:
                    count += 1
        return count

    @_sheet_call
    def purge_entries(self, collection: str, before: datetime, now: datetime) -> int:
        validate_collection(collection, (REJECTED, EXPIRED))
        rows = self._read_entries(collection, now)
        field = "approved_at" if collection == REJECTED else "expires_at"
        kept = []
        for row in rows:
            aged = getattr(entry_from_row(row), field)
            if aged is None or aged >= before:
                kept.append(row)
        purged = len(rows) - len(kept)
        if purged:
            self._overwrite(collection, kept, len(rows))
        return purged

    # ── Administrators ──────────────────────────────────────────────

    @_sheet_call
    def create_admin(self, username: str, password_hash: str, created_at: datetime) -> int:
        if any(row.get("username") == username for row in self._read("admins")):
            raise ValidationError(f"Username '{username}' already exists")
        admin_id = self._next_id()
        self._append("admins", [{
            "id": str(admin_id),
            "username": username,
            "password_hash": password_hash,
            "created_at": _cell(created_at),
        }])
        return admin_id

    @_sheet_call
    def get_admin(self, admin_id: int) -> Optional[AdminRecord]:
        rows = self._read("admins")
        index = self._find(rows, admin_id)
        return admin_from_row(rows[index]) if index != -1 else None

    @_sheet_call
    def get_admin_by_username(self, username: str) -> Optional[AdminRecord]:
        for row in self._read("admins"):
            if row.get("username") == username:
                return admin_from_row(row)
        return None

    @_sheet_call
    def list_admins(self) -> List[AdminRecord]:
        admins = [admin_from_row(row) for row in self._read("admins")]
        return sorted(admins, key=lambda a: (a.created_at or datetime.min, a.id or 0))

    @_sheet_call
    def count_admins(self) -> int:
        return len(self._read("admins"))

    @_sheet_call
    def update_admin_password(self, admin_id: int, password_hash: str) -> bool:
        rows = self._read("admins")
        index = self._find(rows, admin_id)
        if index == -1:
            return False
        rows[index]["password_hash"] = password_hash
        self._overwrite("admins", rows, len(rows))
        return True

    @_sheet_call
    def delete_admin(self, admin_id: int) -> bool:
        rows = self._read("admins")
        kept = [row for row in rows if _parse_int(row.get("id")) != admin_id]
        if len(kept) == len(rows):
            return False
        self._overwrite("admins", kept, len(rows))
        return True

    # ── Audit log ───────────────────────────────────────────────────

    @_sheet_call
    def append_audit(self, record: AuditRecord) -> int:
        audit_id = self._next_id()
        self._append("logs", [{
            "id": str(audit_id),
            "event_type": record.event_type,
            "entry_id": _cell(record.entry_id),
            "admin_username": _cell(record.admin_username),
            "submitter_token": _cell(record.submitter_token),
            "details": _cell(record.details),
            "created_at": _cell(record.created_at),
        }])
        return audit_id

    # ── Export ──────────────────────────────────────────────────────

    @_sheet_call
    def snapshot(self) -> Dict[str, list]:
        """
        Read every tab as-is, without sweeping.

        Returns:
            Entry records keyed by collection (tab placement), plus
            "admins" and "logs"
        """
        data: Dict[str, list] = {
            collection: [entry_from_row(row) for row in self._read(collection)]
            for collection in ENTRY_COLLECTIONS
        }
        data["admins"] = [admin_from_row(row) for row in self._read("admins")]
        data["logs"] = [audit_from_row(row) for row in self._read("logs")]
        return data

    @_sheet_call
    def list_audit(self, limit: int = 50) -> List[AuditRecord]:
        records = [audit_from_row(row) for row in self._read("logs")]
        records.sort(key=lambda r: (r.created_at or datetime.min, r.id or 0), reverse=True)
        return records[:limit]
