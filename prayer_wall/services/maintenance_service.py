"""
Maintenance service for Prayer Wall.

Retention cleanup of old rejected and expired entries, the plain-text
digest of the current wall, and a backend health summary.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from prayer_wall.config import get_retention_days
from prayer_wall.records import EntryRecord
from prayer_wall.services.audit_service import AuditLog, EventTypes
from prayer_wall.storage.base import APPROVED, EXPIRED, PENDING, REJECTED, StoragePort

logger = logging.getLogger(__name__)

DIGEST_CONTENT_LENGTH = 50
ANONYMOUS_NAME = "Anonymous"


def _utcnow():
    """Return current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def cleanup_old_data(
    storage: StoragePort,
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
    dry_run: bool = True,
    audit: Optional[AuditLog] = None,
) -> Dict[str, Any]:
    """
    Hard-delete rejected and expired entries older than the retention period.

    Rejected entries age from their rejection time, expired entries from
    their expiry. Audit records are never pruned.

    Safety: dry_run=True by default. Returns what would be deleted.

    Args:
        storage: Active storage backend
        retention_days: Override for the configured retention_days
        now: Reference time (defaults to current UTC time)
        dry_run: Preview only (default safe)
        audit: Audit log to record the cleanup in

    Returns:
        Dict with per-collection counts and the cutoff used
    """
    now = now or _utcnow()
    days = retention_days if retention_days is not None else get_retention_days()
    cutoff = now - timedelta(days=days)

    if dry_run:
        rejected = [
            e for e in storage.list_rejected(now)
            if e.approved_at is not None and e.approved_at < cutoff
        ]
        expired = [
            e for e in storage.list_expired(now)
            if e.expires_at is not None and e.expires_at < cutoff
        ]
        return {
            "dry_run": True,
            "cutoff": cutoff.isoformat(),
            "rejected": len(rejected),
            "expired": len(expired),
            "entry_ids": [e.id for e in rejected + expired],
        }

    rejected_count = storage.purge_entries(REJECTED, cutoff, now)
    expired_count = storage.purge_entries(EXPIRED, cutoff, now)
    logger.info(
        "Retention cleanup removed %d rejected and %d expired entries older than %s",
        rejected_count, expired_count, cutoff.isoformat(),
    )

    result = {
        "dry_run": False,
        "cutoff": cutoff.isoformat(),
        "rejected": rejected_count,
        "expired": expired_count,
    }
    if audit is not None and (rejected_count or expired_count):
        audit.record(EventTypes.CLEANUP, details=result)
    return result


def build_digest(entries: List[EntryRecord], today: Optional[date] = None) -> str:
    """
    Build a plain-text summary of entries for sharing outside the site.

    Names fall back to "Anonymous"; content is cut to 50 characters.

    Args:
        entries: Entries in display order (normally the visible wall)
        today: Date printed in the heading

    Returns:
        The digest text
    """
    today = today or _utcnow().date()
    lines = [f"Prayer requests ({today.isoformat()})", ""]
    for index, entry in enumerate(entries, start=1):
        name = entry.display_name or ANONYMOUS_NAME
        content = entry.content
        if len(content) > DIGEST_CONTENT_LENGTH:
            content = content[:DIGEST_CONTENT_LENGTH] + "..."
        lines.append(f"{index}. {name}: {content}")
    lines.append("")
    lines.append("May the Lord hear our prayers.")
    return "\n".join(lines)


def generate_digest(
    storage: StoragePort,
    admin: str,
    now: Optional[datetime] = None,
    audit: Optional[AuditLog] = None,
) -> str:
    """Digest of the visible wall, recorded as a digest.generate event."""
    now = now or _utcnow()
    entries = storage.list_approved(now)
    if audit is not None:
        audit.record(EventTypes.DIGEST_GENERATE, admin_username=admin, details={"count": len(entries)})
    return build_digest(entries, now.date())


def get_stats(storage: StoragePort, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Dashboard counts per collection plus backend connectivity.

    Returns:
        Dict with pending/approved/expired/rejected counts and the health check
    """
    now = now or _utcnow()
    return {
        "backend": storage.name,
        "connection": storage.check_connection(),
        "pending": len(storage.list_entries(PENDING, now)),
        "approved": len(storage.list_entries(APPROVED, now)),
        "expired": len(storage.list_entries(EXPIRED, now)),
        "rejected": len(storage.list_entries(REJECTED, now)),
    }
