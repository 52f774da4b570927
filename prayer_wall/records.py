"""
Backend-agnostic records exchanged across the storage port.

Every adapter returns these plain dataclasses, so the moderation engine never
sees SQLAlchemy rows or spreadsheet cells.
"""

from dataclasses import dataclass, asdict, fields
from datetime import datetime
from typing import Any, Dict, Optional

# Entry statuses. Expiry is a timestamp predicate on APPROVED entries,
# not a status of its own.
PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
VALID_STATUSES = (PENDING, APPROVED, REJECTED)

DEFAULT_DURATION_DAYS = 7


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class EntryRecord:
    """A submitted text item moving through the moderation lifecycle."""
    content: str
    id: Optional[int] = None
    display_name: Optional[str] = None
    status: str = PENDING
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    expires_at: Optional[datetime] = None
    duration_days: int = DEFAULT_DURATION_DAYS
    submitter_token: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        """True for an APPROVED entry whose expiry has passed."""
        return (
            self.status == APPROVED
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def is_visible(self, now: datetime) -> bool:
        """True when the entry belongs on the public wall."""
        return self.status == APPROVED and not self.is_expired(now)

    def to_dict(self, include_private: bool = False) -> Dict[str, Any]:
        """
        Serialize to dictionary.

        Args:
            include_private: Include the submitter token (never shown publicly)
        """
        data = {
            "id": self.id,
            "display_name": self.display_name,
            "content": self.content,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "expires_at": _iso(self.expires_at),
            "duration_days": self.duration_days,
        }
        if include_private:
            data["submitter_token"] = self.submitter_token
        return data


ENTRY_FIELDS = tuple(f.name for f in fields(EntryRecord))


@dataclass
class AdminRecord:
    """An administrator account. password_hash is a bcrypt hash, never plaintext."""
    username: str
    password_hash: str = ""
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "created_at": _iso(self.created_at),
        }


@dataclass
class AuditRecord:
    """One append-only audit log row."""
    event_type: str
    id: Optional[int] = None
    entry_id: Optional[int] = None
    admin_username: Optional[str] = None
    submitter_token: Optional[str] = None
    details: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data
