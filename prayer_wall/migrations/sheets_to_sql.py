"""
Google Sheets to SQL data migration for Prayer Wall.

For deployments that started on the spreadsheet backend and want to move to
PostgreSQL (or a SQLite file).

This script:
1. Reads every tab of the spreadsheet without sweeping (the source is not modified)
2. Merges entry tabs, keeping the first copy of an id found in
   PENDING, APPROVED, EXPIRED, REJECTED order. Duplicates left behind by an
   interrupted move are skipped.
3. Normalises placement: rows from the EXPIRED tab become status APPROVED
   (expiry is a timestamp, not a status)
4. Preserves ids for entries, administrators and audit records
5. Resets PostgreSQL id sequences past the imported ids

Usage:
    prayer-wall-sheets-to-sql --target "postgresql://localhost:5432/prayer_wall"
"""

import argparse
import sys
import time
from typing import Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from prayer_wall import database
from prayer_wall.config import get_database_url, get_sheets_config
from prayer_wall.exceptions import PrayerWallError
from prayer_wall.models import Admin, AuditLog, Entry
from prayer_wall.records import (
    APPROVED as STATUS_APPROVED,
    PENDING as STATUS_PENDING,
    REJECTED as STATUS_REJECTED,
    AdminRecord,
    AuditRecord,
    EntryRecord,
)
from prayer_wall.storage.base import APPROVED, EXPIRED, PENDING, REJECTED

# Tab -> status the row must end up with
TAB_STATUS = [
    (PENDING, STATUS_PENDING),
    (APPROVED, STATUS_APPROVED),
    (EXPIRED, STATUS_APPROVED),
    (REJECTED, STATUS_REJECTED),
]

TABLES = ["entries", "admins", "audit_log"]


def merge_entries(snapshot: Dict[str, list]) -> Tuple[List[EntryRecord], int]:
    """
    Merge the entry tabs into one list with unique ids.

    Returns:
        (entries, skipped) where skipped counts duplicates and rows without an id
    """
    merged: Dict[int, EntryRecord] = {}
    skipped = 0
    for collection, status in TAB_STATUS:
        for record in snapshot.get(collection, []):
            if not record.id or record.id in merged:
                skipped += 1
                continue
            record.status = status
            merged[record.id] = record
    return list(merged.values()), skipped


def truncate_target(engine: Engine) -> None:
    """Remove all rows from the target tables."""
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE TABLE audit_log, entries, admins RESTART IDENTITY"))
        else:
            for table in TABLES:
                conn.execute(text(f"DELETE FROM {table}"))


def reset_sequences(engine: Engine) -> None:
    """Move PostgreSQL id sequences past the largest imported id."""
    if engine.dialect.name != "postgresql":
        return
    with engine.begin() as conn:
        for table in TABLES:
            conn.execute(text(
                f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                f"COALESCE((SELECT MAX(id) FROM {table}), 1))"
            ))


def write_entries(engine: Engine, entries: List[EntryRecord]) -> int:
    """Insert entries whose id is not already present. Returns rows written."""
    factory = database.make_session_factory(engine)
    with database.session_scope(factory) as session:
        existing = {row[0] for row in session.query(Entry.id).all()}
        new_rows = [Entry.from_record(e) for e in entries if e.id not in existing]
        session.add_all(new_rows)
        return len(new_rows)


def write_admins(engine: Engine, admins: List[AdminRecord]) -> int:
    """Insert administrators not already present by id or username."""
    factory = database.make_session_factory(engine)
    with database.session_scope(factory) as session:
        existing = session.query(Admin.id, Admin.username).all()
        ids = {row[0] for row in existing}
        usernames = {row[1] for row in existing}
        written = 0
        for admin in admins:
            if not admin.id or not admin.username:
                continue
            if admin.id in ids or admin.username in usernames:
                continue
            session.add(Admin(
                id=admin.id,
                username=admin.username,
                password_hash=admin.password_hash,
                created_at=admin.created_at,
            ))
            ids.add(admin.id)
            usernames.add(admin.username)
            written += 1
        return written


def write_audit(engine: Engine, records: List[AuditRecord]) -> int:
    """Insert audit records not already present by id."""
    factory = database.make_session_factory(engine)
    with database.session_scope(factory) as session:
        existing = {row[0] for row in session.query(AuditLog.id).all()}
        written = 0
        for record in records:
            if not record.id or record.id in existing:
                continue
            session.add(AuditLog(
                id=record.id,
                event_type=record.event_type,
                entry_id=record.entry_id,
                admin_username=record.admin_username,
                submitter_token=record.submitter_token,
                details=record.details,
                created_at=record.created_at,
            ))
            existing.add(record.id)
            written += 1
        return written


def migrate(source, target_engine: Engine, truncate: bool = False, dry_run: bool = False) -> Dict[str, int]:
    """
    Copy everything from a SheetsStorage into a SQL database.

    Args:
        source: SheetsStorage to read from
        target_engine: Engine of the target database; tables are created if missing
        truncate: Empty the target tables first
        dry_run: Report counts without writing

    Returns:
        Dict of counts: entries, skipped, admins, logs (written, or would-be
        read in dry run)
    """
    snapshot = source.snapshot()
    entries, skipped = merge_entries(snapshot)
    admins = snapshot.get("admins", [])
    logs = snapshot.get("logs", [])

    print(f"Entries to insert: {len(entries)} (skipped duplicates/invalid: {skipped})")
    print(f"Admins to insert:  {len(admins)}")
    print(f"Logs to insert:    {len(logs)}")

    if dry_run:
        return {"entries": len(entries), "skipped": skipped, "admins": len(admins), "logs": len(logs)}

    if target_engine.dialect.name == "postgresql":
        database.ensure_database_exists(target_engine.url.render_as_string(hide_password=False))
    database.init_db(target_engine)

    if truncate:
        print("Truncating target tables...")
        truncate_target(target_engine)

    counts = {
        "entries": write_entries(target_engine, entries),
        "skipped": skipped,
        "admins": write_admins(target_engine, admins),
        "logs": write_audit(target_engine, logs),
    }
    reset_sequences(target_engine)
    return counts


def main():
    """CLI entry point for Google Sheets to SQL migration."""
    parser = argparse.ArgumentParser(
        description="Migrate Prayer Wall data from Google Sheets to PostgreSQL or SQLite",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview counts using GOOGLE_SHEETS_ID and DATABASE_URL from the environment
  prayer-wall-sheets-to-sql --dry-run

  # Replace everything in a local Postgres database
  prayer-wall-sheets-to-sql \\
    --target "postgresql://localhost:5432/prayer_wall" --truncate

Prerequisites:
  1. GOOGLE_SHEETS_ID and service account credentials must be set
  2. The service account needs read access to the spreadsheet
"""
    )

    parser.add_argument(
        "--target",
        help="Target database URL (default: from config)",
        default=None
    )

    parser.add_argument(
        "--truncate",
        action="store_true",
        help="Empty the target tables before importing"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be migrated without writing anything"
    )

    args = parser.parse_args()

    from prayer_wall.storage.sheets import SheetsStorage, credentials_info_from_config

    start_time = time.time()
    print("=" * 70)
    print("Prayer Wall: Google Sheets -> SQL Migration")
    print("=" * 70)

    engine: Optional[Engine] = None
    try:
        sheets = get_sheets_config()
        source = SheetsStorage(
            spreadsheet_id=sheets.get("spreadsheet_id"),
            credentials_info=credentials_info_from_config(sheets),
            tabs=sheets.get("tabs"),
        )
        target_url = args.target or get_database_url()
        print(f"Target: {target_url}")
        engine = database.create_engine_for_url(target_url)

        counts = migrate(source, engine, truncate=args.truncate, dry_run=args.dry_run)

        print()
        print("=" * 70)
        print("Dry run complete" if args.dry_run else "Migration completed successfully!")
        print("=" * 70)
        print(f"  entries: {counts['entries']}")
        print(f"  admins:  {counts['admins']}")
        print(f"  logs:    {counts['logs']}")
        print(f"  Total time: {time.time() - start_time:.2f} seconds")
        success = True
    except (SQLAlchemyError, PrayerWallError, EnvironmentError) as e:
        print()
        print("Migration failed!")
        print(f"Error: {e}")
        success = False
    finally:
        if engine is not None:
            engine.dispose()

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
