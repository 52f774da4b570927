"""
Audit/event log for Prayer Wall.

Every state-changing action is recorded twice: as an append-only audit row in
the active storage backend, and as a sanitised JSON line on the
"prayer_wall.events" logger (written to logs/events.jsonl by
setup_logging()). The moderation engine writes here but never reads back.

Recording is best-effort: a failure is logged and swallowed so it can never
fail the moderation action that triggered it.
"""

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from prayer_wall.identity import hash_submitter
from prayer_wall.records import AuditRecord
from prayer_wall.storage.base import StoragePort

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("prayer_wall.events")

# Never written to the event log in clear text
SENSITIVE_FIELDS = ("password", "password_hash", "content", "session_id", "token")


class EventTypes:
    """Event type tags used in the audit log."""
    CREATE_ENTRY = "data.create_entry"

    ADMIN_LOGIN = "auth.login"
    ADMIN_LOGIN_FAIL = "auth.fail"

    APPROVE = "admin.approve"
    APPROVE_ALL = "admin.approve_all"
    REJECT = "admin.reject"
    EXTEND = "admin.extend"
    SET_EXPIRY = "admin.set_expiry"
    RECOVER = "admin.recover"
    EDIT = "admin.edit"

    ADMIN_CREATE = "admin.create"
    ADMIN_DELETE = "admin.delete"
    ADMIN_PASSWORD_CHANGE = "admin.password_change"

    DIGEST_GENERATE = "digest.generate"
    CLEANUP = "system.cleanup"

    RATE_LIMIT = "security.rate_limit"
    SENSITIVE_CONTENT_WARNING = "security.sensitive_content"


def _utcnow():
    """Return current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sanitize(data: Any) -> Dict[str, Any]:
    """
    Redact sensitive fields and replace a raw "ip" with its hash.

    Args:
        data: Event payload; anything other than a mapping is kept under "details"

    Returns:
        A sanitised copy; the input is not modified
    """
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        return {"details": data}
    sanitized = dict(data)
    for field in SENSITIVE_FIELDS:
        if sanitized.get(field):
            sanitized[field] = "[REDACTED]"
    if "ip" in sanitized:
        sanitized["ip_hash"] = hash_submitter(sanitized.pop("ip"))
    return sanitized


class AuditLog:
    """Append-only audit trail, parallel to the entity store."""

    def __init__(self, storage: StoragePort, clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self._clock = clock or _utcnow

    def record(
        self,
        event_type: str,
        entry_id: Optional[int] = None,
        admin_username: Optional[str] = None,
        submitter_token: Optional[str] = None,
        details: Any = None,
    ) -> None:
        """
        Record an event. Never raises.

        Args:
            event_type: One of EventTypes (free-form tags are accepted)
            entry_id: Entry the event concerns, if any
            admin_username: Acting administrator; None for anonymous/system events
            submitter_token: Hashed submitter identity, if relevant
            details: Structured payload, stored as JSON
        """
        now = self._clock()
        payload = {}

        try:
            payload = sanitize(details)
            event = {
                "timestamp": now.isoformat(),
                "event": event_type,
                "entry_id": entry_id,
                "admin_username": admin_username,
                "details": payload,
            }
            event_logger.info(json.dumps(event, default=str, ensure_ascii=False))
        except Exception:
            logger.exception("Failed to write event log line for %s", event_type)

        try:
            self.storage.append_audit(AuditRecord(
                event_type=event_type,
                entry_id=entry_id,
                admin_username=admin_username,
                submitter_token=submitter_token,
                details=json.dumps(payload, default=str, ensure_ascii=False) if payload else None,
                created_at=now,
            ))
        except Exception:
            logger.exception("Failed to append audit record for %s (entry %s)", event_type, entry_id)

    def recent(self, limit: int = 50) -> List[AuditRecord]:
        """Most recent audit records first (for the admin dashboard)."""
        return self.storage.list_audit(limit)
