"""
Storage port: the persistence contract the moderation engine depends on.

Every backend adapter implements StoragePort and must behave identically
as seen from the services layer:

- List ordering is part of the contract (see LIST_ORDER).
- Identifiers are opaque integers; callers never assume they are gap-free.
- update_entry / move_entry only touch a row that is still in the expected
  collection when the write happens. A precondition that no longer holds
  is reported as False / None, never raised.
- Connectivity failures surface as BackendUnavailable.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from prayer_wall.records import AdminRecord, AuditRecord, EntryRecord

# Logical entry collections
PENDING = "pending"
APPROVED = "approved"          # APPROVED and not yet expired
EXPIRED = "expired"            # APPROVED with expires_at <= now
REJECTED = "rejected"
APPROVED_ALL = "approved_all"  # listing only: APPROVED, visible or expired

ENTRY_COLLECTIONS = (PENDING, APPROVED, EXPIRED, REJECTED)
LISTABLE_COLLECTIONS = ENTRY_COLLECTIONS + (APPROVED_ALL,)

# (field, descending) per listing; ties are broken by id in the same direction
LIST_ORDER = {
    PENDING: ("created_at", False),
    APPROVED: ("approved_at", True),
    APPROVED_ALL: ("approved_at", True),
    EXPIRED: ("expires_at", True),
    REJECTED: ("approved_at", True),
}

EntryMutator = Callable[[EntryRecord], None]


def validate_collection(collection: str, allowed: Sequence[str] = ENTRY_COLLECTIONS) -> None:
    if collection not in allowed:
        raise ValueError(f"Invalid collection '{collection}'. Must be one of: {list(allowed)}")


class StoragePort(ABC):
    """Abstract persistence contract over entries, administrators and audit records."""

    #: Backend name reported in health checks ("sqlite", "postgres", "sheets")
    name: str = "abstract"

    @abstractmethod
    def init(self) -> None:
        """Create tables / worksheets. Safe to call multiple times."""

    @abstractmethod
    def check_connection(self) -> dict:
        """Return {"status": "connected", ...} or {"status": "error", "error": ...}."""

    # ── Entries ─────────────────────────────────────────────────────

    @abstractmethod
    def create_entry(self, record: EntryRecord) -> int:
        """Persist a new PENDING entry and return its id."""

    @abstractmethod
    def get_entry(self, entry_id: int) -> Optional[EntryRecord]:
        """Fetch an entry from any collection."""

    @abstractmethod
    def list_entries(self, collection: str, now: datetime) -> List[EntryRecord]:
        """List one collection, ordered per LIST_ORDER."""

    @abstractmethod
    def update_entry(
        self,
        entry_id: int,
        collection: str,
        mutator: EntryMutator,
        now: datetime,
    ) -> bool:
        """
        Apply mutator to an entry that is currently in `collection`.

        The mutator must not change status. Returns True if a row changed.
        """

    @abstractmethod
    def move_entry(
        self,
        entry_id: int,
        from_collections: Sequence[str],
        to_collection: str,
        mutator: EntryMutator,
        now: datetime,
    ) -> Optional[EntryRecord]:
        """
        Move an entry found in any of `from_collections` into `to_collection`.

        Collections are tried in order. The mutator sets the new status and
        decision fields. Returns the moved record, or None if no row matched.
        """

    @abstractmethod
    def move_all(
        self,
        from_collection: str,
        to_collection: str,
        mutator: EntryMutator,
        now: datetime,
    ) -> List[EntryRecord]:
        """Move every entry in `from_collection` as one logical operation."""

    @abstractmethod
    def count_recent_by_submitter(self, submitter_token: str, since: datetime) -> int:
        """Count entries (any collection) from a submitter created after `since`."""

    @abstractmethod
    def purge_entries(self, collection: str, before: datetime, now: datetime) -> int:
        """
        Hard-delete old entries for retention cleanup.

        Rejected entries are aged by approved_at (decision time), expired
        entries by expires_at. Only REJECTED and EXPIRED may be purged.
        """

    # ── Administrators ──────────────────────────────────────────────

    @abstractmethod
    def create_admin(self, username: str, password_hash: str, created_at: datetime) -> int:
        """Create an administrator and return its id."""

    @abstractmethod
    def get_admin(self, admin_id: int) -> Optional[AdminRecord]:
        pass

    @abstractmethod
    def get_admin_by_username(self, username: str) -> Optional[AdminRecord]:
        pass

    @abstractmethod
    def list_admins(self) -> List[AdminRecord]:
        """All administrators, oldest first."""

    @abstractmethod
    def count_admins(self) -> int:
        pass

    @abstractmethod
    def update_admin_password(self, admin_id: int, password_hash: str) -> bool:
        pass

    @abstractmethod
    def delete_admin(self, admin_id: int) -> bool:
        pass

    # ── Audit log ───────────────────────────────────────────────────

    @abstractmethod
    def append_audit(self, record: AuditRecord) -> int:
        """Append an audit record and return its id."""

    @abstractmethod
    def list_audit(self, limit: int = 50) -> List[AuditRecord]:
        """Most recent audit records first."""

    # ── Convenience listings ────────────────────────────────────────

    def list_pending(self, now: datetime) -> List[EntryRecord]:
        return self.list_entries(PENDING, now)

    def list_approved(self, now: datetime) -> List[EntryRecord]:
        return self.list_entries(APPROVED, now)

    def list_approved_all(self, now: datetime) -> List[EntryRecord]:
        return self.list_entries(APPROVED_ALL, now)

    def list_expired(self, now: datetime) -> List[EntryRecord]:
        return self.list_entries(EXPIRED, now)

    def list_rejected(self, now: datetime) -> List[EntryRecord]:
        return self.list_entries(REJECTED, now)
