"""
SQLAlchemy models for Prayer Wall.

Portable: the same schema is created on SQLite (embedded file store) and
PostgreSQL (server store). Timestamps are naive UTC datetimes because SQLite
doesn't store tz info.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger, CheckConstraint, Column, DateTime, Index, Integer, String, Text,
)
from sqlalchemy.orm import declarative_base

from prayer_wall.records import (
    DEFAULT_DURATION_DAYS, PENDING, VALID_STATUSES,
    AdminRecord, AuditRecord, EntryRecord,
)

Base = declarative_base()

# Spreadsheet-generated ids are microsecond timestamps and need 64 bits on
# PostgreSQL; SQLite only autoincrements an INTEGER PRIMARY KEY.
_Id = BigInteger().with_variant(Integer, "sqlite")


def _utcnow():
    """Return current UTC time as a naive datetime (SQLite doesn't store tz info)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Entry(Base):
    """A submitted prayer entry. Expiry is represented by expires_at only."""
    __tablename__ = "entries"

    id = Column(_Id, primary_key=True)
    display_name = Column(String(50), nullable=True)
    content = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=PENDING)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String(100), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    duration_days = Column(Integer, nullable=False, default=DEFAULT_DURATION_DAYS)
    submitter_token = Column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN (" + ", ".join(f"'{status}'" for status in VALID_STATUSES) + ")",
            name="ck_entries_status",
        ),
        Index("idx_entries_status", "status"),
        Index("idx_entries_created_at", "created_at"),
        Index("idx_entries_expires_at", "expires_at"),
        Index("idx_entries_submitter_created", "submitter_token", "created_at"),
    )

    def __repr__(self):
        return f"<Entry(id={self.id}, status='{self.status}', expires_at={self.expires_at})>"

    @classmethod
    def from_record(cls, record: EntryRecord) -> "Entry":
        return cls(
            id=record.id,
            display_name=record.display_name,
            content=record.content,
            status=record.status,
            created_at=record.created_at,
            approved_at=record.approved_at,
            approved_by=record.approved_by,
            expires_at=record.expires_at,
            duration_days=record.duration_days,
            submitter_token=record.submitter_token,
        )

    def to_record(self) -> EntryRecord:
        return EntryRecord(
            id=self.id,
            display_name=self.display_name,
            content=self.content,
            status=self.status,
            created_at=self.created_at,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            expires_at=self.expires_at,
            duration_days=self.duration_days if self.duration_days is not None else DEFAULT_DURATION_DAYS,
            submitter_token=self.submitter_token,
        )


class Admin(Base):
    __tablename__ = "admins"

    id = Column(_Id, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Admin(id={self.id}, username='{self.username}')>"

    def to_record(self) -> AdminRecord:
        return AdminRecord(
            id=self.id,
            username=self.username,
            password_hash=self.password_hash,
            created_at=self.created_at,
        )


class AuditLog(Base):
    """Append-only audit trail. Never updated or deleted by the application."""
    __tablename__ = "audit_log"

    id = Column(_Id, primary_key=True)
    event_type = Column(String(64), nullable=False)
    entry_id = Column(BigInteger, nullable=True)
    admin_username = Column(String(100), nullable=True)
    submitter_token = Column(String(64), nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_audit_log_event_type", "event_type"),
        Index("idx_audit_log_created_at", "created_at"),
    )

    def to_record(self) -> AuditRecord:
        return AuditRecord(
            id=self.id,
            event_type=self.event_type,
            entry_id=self.entry_id,
            admin_username=self.admin_username,
            submitter_token=self.submitter_token,
            details=self.details,
            created_at=self.created_at,
        )
