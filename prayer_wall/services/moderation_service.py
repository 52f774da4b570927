"""
Moderation service - the entry lifecycle.

    PENDING --approve--> APPROVED --(expires_at passes)--> expired
       |                    |  ^
       +------reject--------+  | recover
                  v            |
               REJECTED -------+

Expiry is not a status: an APPROVED entry is expired once expires_at <= now.
Every transition is a single conditional write through the storage port. A
transition whose precondition no longer holds (approve on a non-pending
entry, extend on an expired one, a concurrent moderator got there first)
changes nothing and returns False.
"""

import logging
import re
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Callable, List, Optional, Union

from prayer_wall.exceptions import RateLimited, SensitiveContentWarning, ValidationError
from prayer_wall.records import (
    APPROVED as STATUS_APPROVED,
    DEFAULT_DURATION_DAYS,
    PENDING as STATUS_PENDING,
    REJECTED as STATUS_REJECTED,
    EntryRecord,
)
from prayer_wall.services.audit_service import AuditLog, EventTypes
from prayer_wall.storage.base import APPROVED, PENDING, REJECTED, StoragePort

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1000
MAX_DISPLAY_NAME_LENGTH = 50
EXTEND_DAYS = 7

RATE_LIMIT_WINDOW = timedelta(minutes=5)
RATE_LIMIT_MAX_SUBMISSIONS = 3

SENSITIVE_PATTERNS = [
    (re.compile(r"\b[\w.-]+@[\w.-]+\.\w{2,}\b", re.IGNORECASE), "email"),
    (re.compile(r"\b\d{8,}\b"), "phone"),
    (re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"), "card"),
]

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateInput = Union[str, date, datetime]


def _utcnow():
    """Return current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Input helpers ───────────────────────────────────────────────────

def validate_content(content: Optional[str]) -> str:
    """
    Trim and validate entry content.

    Returns:
        The trimmed content

    Raises:
        ValidationError: empty or longer than MAX_CONTENT_LENGTH
    """
    text = (content or "").strip()
    if not text:
        raise ValidationError("Content is required.")
    if len(text) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content must be at most {MAX_CONTENT_LENGTH} characters.")
    return text


def clean_display_name(display_name: Optional[str]) -> Optional[str]:
    """Trim and truncate a display name; blank means anonymous (None)."""
    name = (display_name or "").strip()[:MAX_DISPLAY_NAME_LENGTH]
    return name or None


def check_sensitive_content(content: str) -> List[str]:
    """Return the kinds of personal data the content appears to contain."""
    return [kind for pattern, kind in SENSITIVE_PATTERNS if pattern.search(content or "")]


def normalize_duration(duration_days) -> int:
    """Positive whole number of days, else the 7-day default."""
    try:
        days = int(duration_days)
    except (TypeError, ValueError):
        return DEFAULT_DURATION_DAYS
    return days if days > 0 else DEFAULT_DURATION_DAYS


def _as_date(value: DateInput) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not _DATE_RE.match(text):
        raise ValidationError(f"Invalid date '{value}'. Expected YYYY-MM-DD.")
    try:
        return date.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(f"Invalid date '{value}'.") from e


def parse_expiry_date(value: DateInput, today: date) -> datetime:
    """
    Turn a requested expiry day into the stored timestamp (that day, 23:59:59).

    The comparison with today is by calendar day only, so today itself is
    accepted.

    Raises:
        ValidationError: malformed value, or a day before today
    """
    day = _as_date(value)
    if day < today:
        raise ValidationError(f"Expiry date {day.isoformat()} is in the past.")
    return datetime.combine(day, dt_time(23, 59, 59))


def duration_from_expiry_date(value: Optional[DateInput], today: date) -> int:
    """
    Convert a submitter's requested end date into a duration in days.

    Falls back to the default for a missing, malformed or non-future date.
    """
    if not value:
        return DEFAULT_DURATION_DAYS
    try:
        day = _as_date(value)
    except ValidationError:
        return DEFAULT_DURATION_DAYS
    return normalize_duration((day - today).days)


# ── Service ─────────────────────────────────────────────────────────

class ModerationService:
    """Submission and moderation operations over one storage backend."""

    def __init__(
        self,
        storage: StoragePort,
        audit: Optional[AuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self._clock = clock or _utcnow
        self.audit = audit or AuditLog(storage, clock=self._clock)

    def _now(self) -> datetime:
        return self._clock()

    # ── Submission ──────────────────────────────────────────────────

    def submit_entry(
        self,
        display_name: Optional[str],
        content: str,
        submitter_token: Optional[str],
        duration_days: Optional[int] = None,
        confirm_sensitive: bool = False,
    ) -> int:
        """
        Create a new PENDING entry.

        Args:
            display_name: Optional name shown with the entry (truncated to 50)
            content: Entry text, 1-1000 characters after trimming
            submitter_token: Hashed submitter identity (see identity.hash_submitter)
            duration_days: Requested visibility once approved; defaults to 7
            confirm_sensitive: Submitter confirmed content flagged as personal data

        Returns:
            The new entry id

        Raises:
            RateLimited: 3 or more entries from this submitter in the last 5 minutes
            ValidationError: content empty or too long
            SensitiveContentWarning: content looks like personal data and was not confirmed
        """
        now = self._now()

        if submitter_token:
            recent = self.storage.count_recent_by_submitter(submitter_token, now - RATE_LIMIT_WINDOW)
            if recent >= RATE_LIMIT_MAX_SUBMISSIONS:
                logger.info("Submission rate limit hit (%d recent)", recent)
                self.audit.record(
                    EventTypes.RATE_LIMIT,
                    submitter_token=submitter_token,
                    details={"count": recent},
                )
                raise RateLimited(recent, int(RATE_LIMIT_WINDOW.total_seconds()))

        text = validate_content(content)

        detected = check_sensitive_content(text)
        if detected and not confirm_sensitive:
            self.audit.record(
                EventTypes.SENSITIVE_CONTENT_WARNING,
                submitter_token=submitter_token,
                details={"detected_types": detected},
            )
            raise SensitiveContentWarning(detected)

        name = clean_display_name(display_name)
        days = normalize_duration(duration_days)
        entry_id = self.storage.create_entry(EntryRecord(
            content=text,
            display_name=name,
            status=STATUS_PENDING,
            created_at=now,
            duration_days=days,
            submitter_token=submitter_token,
        ))

        self.audit.record(
            EventTypes.CREATE_ENTRY,
            entry_id=entry_id,
            submitter_token=submitter_token,
            details={"has_display_name": name is not None, "duration_days": days},
        )
        return entry_id

    # ── Transitions ─────────────────────────────────────────────────

    def _approver(self, admin: str, now: datetime, duration_days: Optional[int] = None):
        def mutate(record: EntryRecord) -> None:
            days = normalize_duration(duration_days if duration_days is not None else record.duration_days)
            record.status = STATUS_APPROVED
            record.approved_at = now
            record.approved_by = admin
            record.duration_days = days
            record.expires_at = now + timedelta(days=days)
        return mutate

    def approve(self, entry_id: int, admin: str, duration_days: Optional[int] = None) -> bool:
        """
        Approve a PENDING entry; it expires duration_days from now.

        Args:
            entry_id: Entry to approve
            admin: Acting administrator username
            duration_days: Override for the submitter's requested duration

        Returns:
            True if the entry was pending and is now approved
        """
        now = self._now()
        moved = self.storage.move_entry(
            entry_id, [PENDING], APPROVED, self._approver(admin, now, duration_days), now
        )
        if moved is None:
            return False
        self.audit.record(
            EventTypes.APPROVE,
            entry_id=entry_id,
            admin_username=admin,
            details={"duration_days": moved.duration_days, "expires_at": moved.expires_at},
        )
        return True

    def approve_all_pending(self, admin: str) -> int:
        """Approve every pending entry with its own requested duration. Returns the count."""
        now = self._now()
        moved = self.storage.move_all(PENDING, APPROVED, self._approver(admin, now), now)
        if moved:
            self.audit.record(
                EventTypes.APPROVE_ALL,
                admin_username=admin,
                details={"count": len(moved), "entry_ids": [record.id for record in moved]},
            )
        return len(moved)

    def reject(self, entry_id: int, admin: str) -> bool:
        """Reject a PENDING or visible APPROVED entry."""
        now = self._now()

        def mutate(record: EntryRecord) -> None:
            record.status = STATUS_REJECTED
            record.approved_at = now
            record.approved_by = admin

        moved = self.storage.move_entry(entry_id, [PENDING, APPROVED], REJECTED, mutate, now)
        if moved is None:
            return False
        self.audit.record(EventTypes.REJECT, entry_id=entry_id, admin_username=admin)
        return True

    def extend(self, entry_id: int, admin: str) -> bool:
        """Push a visible entry's expiry back by 7 days from its current expiry."""
        now = self._now()
        extended = {}

        def mutate(record: EntryRecord) -> None:
            record.expires_at = (record.expires_at or now) + timedelta(days=EXTEND_DAYS)
            extended["expires_at"] = record.expires_at

        if not self.storage.update_entry(entry_id, APPROVED, mutate, now):
            return False
        self.audit.record(EventTypes.EXTEND, entry_id=entry_id, admin_username=admin, details=extended)
        return True

    def set_expiry(self, entry_id: int, admin: str, expiry_date: DateInput) -> bool:
        """
        Set an explicit expiry day for a visible entry.

        Raises:
            ValidationError: malformed date, or a day before today
        """
        now = self._now()
        expires_at = parse_expiry_date(expiry_date, now.date())

        def mutate(record: EntryRecord) -> None:
            record.expires_at = expires_at

        if not self.storage.update_entry(entry_id, APPROVED, mutate, now):
            return False
        self.audit.record(
            EventTypes.SET_EXPIRY,
            entry_id=entry_id,
            admin_username=admin,
            details={"expires_at": expires_at},
        )
        return True

    def recover(self, entry_id: int, admin: str, expiry_date: Optional[DateInput] = None) -> bool:
        """
        Restore a REJECTED entry to the wall.

        Without an explicit expiry day the entry gets its stored duration
        counted from now.

        Raises:
            ValidationError: malformed date, or a day before today
        """
        now = self._now()
        explicit = parse_expiry_date(expiry_date, now.date()) if expiry_date else None

        def mutate(record: EntryRecord) -> None:
            record.status = STATUS_APPROVED
            record.approved_at = now
            record.approved_by = admin
            record.expires_at = explicit or now + timedelta(days=normalize_duration(record.duration_days))

        moved = self.storage.move_entry(entry_id, [REJECTED], APPROVED, mutate, now)
        if moved is None:
            return False
        self.audit.record(
            EventTypes.RECOVER,
            entry_id=entry_id,
            admin_username=admin,
            details={"expires_at": moved.expires_at},
        )
        return True

    def edit(self, entry_id: int, admin: str, display_name: Optional[str], content: str) -> bool:
        """
        Replace the name and content of a PENDING or visible APPROVED entry.

        Raises:
            ValidationError: content empty or too long
        """
        now = self._now()
        text = validate_content(content)
        name = clean_display_name(display_name)

        def mutate(record: EntryRecord) -> None:
            record.display_name = name
            record.content = text

        for collection in (PENDING, APPROVED):
            if self.storage.update_entry(entry_id, collection, mutate, now):
                self.audit.record(EventTypes.EDIT, entry_id=entry_id, admin_username=admin)
                return True
        return False

    # ── Queries ─────────────────────────────────────────────────────

    def get_entry(self, entry_id: int) -> Optional[EntryRecord]:
        return self.storage.get_entry(entry_id)

    def list_pending(self) -> List[EntryRecord]:
        """Pending entries, oldest first."""
        return self.storage.list_pending(self._now())

    def list_approved_visible(self) -> List[EntryRecord]:
        """The public wall: approved and not expired, most recently approved first."""
        return self.storage.list_approved(self._now())

    def list_approved_all(self) -> List[EntryRecord]:
        return self.storage.list_approved_all(self._now())

    def list_expired(self) -> List[EntryRecord]:
        return self.storage.list_expired(self._now())

    def list_rejected(self) -> List[EntryRecord]:
        return self.storage.list_rejected(self._now())
