"""
Storage backends for Prayer Wall.

Exactly one adapter is selected from configuration at process start and
shared for the process lifetime:

    storage = get_storage()
    moderation = ModerationService(storage)
"""

from typing import Optional

from prayer_wall.config import (
    get_database_url,
    get_sheets_config,
    load_config,
)
from prayer_wall.storage.base import (
    APPROVED,
    APPROVED_ALL,
    ENTRY_COLLECTIONS,
    EXPIRED,
    PENDING,
    REJECTED,
    StoragePort,
)

_storage: Optional[StoragePort] = None


def create_storage(backend: Optional[str] = None) -> StoragePort:
    """Build (but do not cache) the adapter for a backend name."""
    config = load_config()
    backend = backend or config["backend"]

    if backend == "sqlite":
        from prayer_wall.storage.sql import SqliteStorage
        return SqliteStorage(get_database_url())

    if backend == "postgres":
        from prayer_wall.storage.sql import PostgresStorage
        return PostgresStorage(get_database_url(), sslmode=config.get("pg_sslmode"))

    if backend == "sheets":
        from prayer_wall.storage.sheets import SheetsStorage, credentials_info_from_config
        sheets = get_sheets_config()
        return SheetsStorage(
            spreadsheet_id=sheets.get("spreadsheet_id"),
            credentials_info=credentials_info_from_config(sheets),
            tabs=sheets.get("tabs"),
        )

    raise ValueError(f"Unknown storage backend '{backend}'")


def get_storage() -> StoragePort:
    """Get the process-wide storage adapter, creating and initializing it once."""
    global _storage
    if _storage is None:
        storage = create_storage()
        storage.init()
        _storage = storage
    return _storage


def reset_storage() -> None:
    """Drop the process-wide adapter (for testing)."""
    global _storage
    if _storage is not None and hasattr(_storage, "dispose"):
        _storage.dispose()
    _storage = None


__all__ = [
    "APPROVED",
    "APPROVED_ALL",
    "ENTRY_COLLECTIONS",
    "EXPIRED",
    "PENDING",
    "REJECTED",
    "StoragePort",
    "create_storage",
    "get_storage",
    "reset_storage",
]
