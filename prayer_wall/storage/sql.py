"""
SQL backend adapters (SQLite embedded file store, PostgreSQL server store).

Filtering, ordering and conditional writes are delegated to the database.
Every entry write is a single guarded UPDATE:

    UPDATE entries SET ... WHERE id = :id
        AND <collection predicate>          -- e.g. status = 'PENDING'
        AND <each changed column = value read>

so a stale read can never overwrite a row another request changed in the
meantime; the loser sees rowcount 0 and reports "no change". No
application-level locking is needed on top of the database's own.
"""

import functools
import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, asc, desc, func, or_, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine

from prayer_wall import database
from prayer_wall.exceptions import BackendUnavailable, ValidationError
from prayer_wall.models import Admin, AuditLog, Entry
from prayer_wall.records import (
    APPROVED as STATUS_APPROVED,
    ENTRY_FIELDS,
    PENDING as STATUS_PENDING,
    REJECTED as STATUS_REJECTED,
    AdminRecord,
    AuditRecord,
    EntryRecord,
)
from prayer_wall.storage.base import (
    APPROVED,
    APPROVED_ALL,
    EXPIRED,
    LIST_ORDER,
    LISTABLE_COLLECTIONS,
    PENDING,
    REJECTED,
    EntryMutator,
    StoragePort,
    validate_collection,
)

logger = logging.getLogger(__name__)


def _translate_errors(method):
    """Surface connectivity failures as BackendUnavailable."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (sa_exc.OperationalError, sa_exc.TimeoutError, sa_exc.InterfaceError) as e:
            logger.error("%s backend unavailable during %s: %s", self.name, method.__name__, e)
            raise BackendUnavailable(f"{self.name} database unavailable") from e
    return wrapper


def _collection_filter(collection: str, now: datetime):
    """WHERE clause selecting one logical collection."""
    if collection == PENDING:
        return Entry.status == STATUS_PENDING
    if collection == APPROVED:
        return and_(
            Entry.status == STATUS_APPROVED,
            or_(Entry.expires_at.is_(None), Entry.expires_at > now),
        )
    if collection == EXPIRED:
        return and_(
            Entry.status == STATUS_APPROVED,
            Entry.expires_at.isnot(None),
            Entry.expires_at <= now,
        )
    if collection == REJECTED:
        return Entry.status == STATUS_REJECTED
    if collection == APPROVED_ALL:
        return Entry.status == STATUS_APPROVED
    raise ValueError(f"Invalid collection '{collection}'")


def _column_matches(column, value):
    return column.is_(None) if value is None else column == value


class SqlStorage(StoragePort):
    """StoragePort over a SQLAlchemy engine. Subclasses pick the engine setup."""

    name = "sql"

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = database.make_session_factory(engine)

    def _session(self):
        return database.session_scope(self._session_factory)

    def init(self) -> None:
        database.init_db(self.engine)

    def check_connection(self) -> dict:
        return database.check_connection(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # ── Entries ─────────────────────────────────────────────────────

    @_translate_errors
    def create_entry(self, record: EntryRecord) -> int:
        with self._session() as session:
            row = Entry.from_record(replace(record, id=None))
            session.add(row)
            session.flush()
            return row.id

    @_translate_errors
    def get_entry(self, entry_id: int) -> Optional[EntryRecord]:
        with self._session() as session:
            row = session.get(Entry, entry_id)
            return row.to_record() if row else None

    @_translate_errors
    def list_entries(self, collection: str, now: datetime) -> List[EntryRecord]:
        validate_collection(collection, LISTABLE_COLLECTIONS)
        field, descending = LIST_ORDER[collection]
        direction = desc if descending else asc
        column = getattr(Entry, field)
        with self._session() as session:
            rows = (
                session.query(Entry)
                .filter(_collection_filter(collection, now))
                .order_by(direction(column).nulls_last(), direction(Entry.id))
                .all()
            )
            return [row.to_record() for row in rows]

    def _guarded_write(self, session, row: Entry, collection: str, mutator: EntryMutator,
                       now: datetime) -> Optional[EntryRecord]:
        """
        Apply mutator to a copy of row and write it back with a guarded UPDATE.

        Returns the new record, or None if the row no longer matched.
        """
        before = row.to_record()
        after = replace(before)
        mutator(after)
        after.id = before.id

        changes = {
            name: getattr(after, name)
            for name in ENTRY_FIELDS
            if name != "id" and getattr(after, name) != getattr(before, name)
        }
        guards = [
            Entry.id == before.id,
            _collection_filter(collection, now),
        ]
        guards.extend(_column_matches(getattr(Entry, name), getattr(before, name)) for name in changes)

        result = session.execute(
            update(Entry)
            .where(*guards)
            .values(**(changes or {"status": before.status}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("Guarded update on entry %s matched no row (concurrent change)", before.id)
            return None
        return after

    @_translate_errors
    def update_entry(self, entry_id: int, collection: str, mutator: EntryMutator,
                     now: datetime) -> bool:
        validate_collection(collection)
        with self._session() as session:
            row = (
                session.query(Entry)
                .filter(Entry.id == entry_id, _collection_filter(collection, now))
                .first()
            )
            if row is None:
                return False
            result = self._guarded_write(session, row, collection, mutator, now)
            if result is not None and result.status != row.status:
                raise ValueError("update_entry mutators must not change status; use move_entry")
            return result is not None

    @_translate_errors
    def move_entry(self, entry_id: int, from_collections: Sequence[str], to_collection: str,
                   mutator: EntryMutator, now: datetime) -> Optional[EntryRecord]:
        validate_collection(to_collection)
        with self._session() as session:
            for collection in from_collections:
                validate_collection(collection)
                row = (
                    session.query(Entry)
                    .filter(Entry.id == entry_id, _collection_filter(collection, now))
                    .first()
                )
                if row is None:
                    continue
                return self._guarded_write(session, row, collection, mutator, now)
            return None

    @_translate_errors
    def move_all(self, from_collection: str, to_collection: str, mutator: EntryMutator,
                 now: datetime) -> List[EntryRecord]:
        validate_collection(from_collection)
        validate_collection(to_collection)
        field, descending = LIST_ORDER[from_collection]
        direction = desc if descending else asc
        moved = []
        with self._session() as session:
            rows = (
                session.query(Entry)
                .filter(_collection_filter(from_collection, now))
                .order_by(direction(getattr(Entry, field)), direction(Entry.id))
                .all()
            )
            for row in rows:
                result = self._guarded_write(session, row, from_collection, mutator, now)
                if result is not None:
                    moved.append(result)
        return moved

    @_translate_errors
    def count_recent_by_submitter(self, submitter_token: str, since: datetime) -> int:
        if not submitter_token:
            return 0
        with self._session() as session:
            return (
                session.query(func.count(Entry.id))
                .filter(Entry.submitter_token == submitter_token, Entry.created_at > since)
                .scalar()
            ) or 0

    @_translate_errors
    def purge_entries(self, collection: str, before: datetime, now: datetime) -> int:
        validate_collection(collection, (REJECTED, EXPIRED))
        age_column = Entry.approved_at if collection == REJECTED else Entry.expires_at
        with self._session() as session:
            return (
                session.query(Entry)
                .filter(_collection_filter(collection, now), age_column < before)
                .delete(synchronize_session=False)
            )

    # ── Administrators ──────────────────────────────────────────────

    @_translate_errors
    def create_admin(self, username: str, password_hash: str, created_at: datetime) -> int:
        try:
            with self._session() as session:
                row = Admin(username=username, password_hash=password_hash, created_at=created_at)
                session.add(row)
                session.flush()
                return row.id
        except sa_exc.IntegrityError as e:
            raise ValidationError(f"Username '{username}' already exists") from e

    @_translate_errors
    def get_admin(self, admin_id: int) -> Optional[AdminRecord]:
        with self._session() as session:
            row = session.get(Admin, admin_id)
            return row.to_record() if row else None

    @_translate_errors
    def get_admin_by_username(self, username: str) -> Optional[AdminRecord]:
        with self._session() as session:
            row = session.query(Admin).filter(Admin.username == username).first()
            return row.to_record() if row else None

    @_translate_errors
    def list_admins(self) -> List[AdminRecord]:
        with self._session() as session:
            rows = session.query(Admin).order_by(Admin.created_at, Admin.id).all()
            return [row.to_record() for row in rows]

    @_translate_errors
    def count_admins(self) -> int:
        with self._session() as session:
            return session.query(func.count(Admin.id)).scalar() or 0

    @_translate_errors
    def update_admin_password(self, admin_id: int, password_hash: str) -> bool:
        with self._session() as session:
            result = session.execute(
                update(Admin).where(Admin.id == admin_id).values(password_hash=password_hash)
            )
            return result.rowcount > 0

    @_translate_errors
    def delete_admin(self, admin_id: int) -> bool:
        with self._session() as session:
            deleted = session.query(Admin).filter(Admin.id == admin_id).delete(synchronize_session=False)
            return deleted > 0

    # ── Audit log ───────────────────────────────────────────────────

    @_translate_errors
    def append_audit(self, record: AuditRecord) -> int:
        with self._session() as session:
            row = AuditLog(
                event_type=record.event_type,
                entry_id=record.entry_id,
                admin_username=record.admin_username,
                submitter_token=record.submitter_token,
                details=record.details,
                created_at=record.created_at,
            )
            session.add(row)
            session.flush()
            return row.id

    @_translate_errors
    def list_audit(self, limit: int = 50) -> List[AuditRecord]:
        with self._session() as session:
            rows = (
                session.query(AuditLog)
                .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
                .limit(limit)
                .all()
            )
            return [row.to_record() for row in rows]


class SqliteStorage(SqlStorage):
    """Embedded single-file store."""

    name = "sqlite"

    def __init__(self, db_url: str = "sqlite:///:memory:", engine: Optional[Engine] = None):
        super().__init__(engine or database.create_engine_for_url(db_url))


class PostgresStorage(SqlStorage):
    """Networked PostgreSQL store over a connection pool."""

    name = "postgres"

    def __init__(self, db_url: str, sslmode: Optional[str] = None, engine: Optional[Engine] = None):
        self.db_url = db_url
        super().__init__(engine or database.create_engine_for_url(db_url, sslmode=sslmode))

    def init(self) -> None:
        database.ensure_database_exists(self.db_url)
        super().init()
