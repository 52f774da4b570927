"""
Prayer Wall - a moderated public submission board.

Visitors submit short entries; administrators approve, reject, edit and
time-bound them before they appear on the wall. The same workflow runs over
SQLite, PostgreSQL or a Google spreadsheet, selected in
~/.prayer-wall/config.json or via PRAYER_WALL_BACKEND.
"""

__version__ = "0.1.0"

from prayer_wall.records import EntryRecord, AdminRecord, AuditRecord
from prayer_wall.storage import create_storage, get_storage, reset_storage

__all__ = [
    "__version__",
    "EntryRecord",
    "AdminRecord",
    "AuditRecord",
    "create_storage",
    "get_storage",
    "reset_storage",
]
