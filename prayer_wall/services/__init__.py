"""
Services for Prayer Wall.

Each service encapsulates a logical unit of functionality and takes the
storage backend it works against as a constructor argument.
"""

from prayer_wall.services.audit_service import AuditLog, EventTypes, sanitize
from prayer_wall.services.moderation_service import (
    ModerationService,
    validate_content,
    clean_display_name,
    check_sensitive_content,
    parse_expiry_date,
    duration_from_expiry_date,
)
from prayer_wall.services.admin_service import (
    AdminService,
    hash_password,
    verify_password,
)
from prayer_wall.services.maintenance_service import (
    cleanup_old_data,
    build_digest,
    generate_digest,
    get_stats,
)

__all__ = [
    # Audit
    "AuditLog",
    "EventTypes",
    "sanitize",
    # Moderation
    "ModerationService",
    "validate_content",
    "clean_display_name",
    "check_sensitive_content",
    "parse_expiry_date",
    "duration_from_expiry_date",
    # Administrators
    "AdminService",
    "hash_password",
    "verify_password",
    # Maintenance
    "cleanup_old_data",
    "build_digest",
    "generate_digest",
    "get_stats",
]
