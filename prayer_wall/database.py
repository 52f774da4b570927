"""
Database connection and session management for the SQL backends.

Supports SQLite (embedded file, WAL journal) and PostgreSQL (connection
pool). Engines are created by the storage adapters, which own them for the
process lifetime.
"""

from contextlib import contextmanager
from typing import Generator, Optional
from urllib.parse import urlparse, urlunparse

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from prayer_wall.models import Base


def is_postgres_url(db_url: str) -> bool:
    return db_url.startswith("postgresql") or db_url.startswith("postgres")


def create_engine_for_url(db_url: str, sslmode: Optional[str] = None) -> Engine:
    """
    Create a SQLAlchemy engine for a SQLite or PostgreSQL URL.

    Args:
        db_url: SQLAlchemy database URL
        sslmode: PostgreSQL sslmode ("disable" turns TLS off; default "require"
            for hosted databases is left to the URL when not given)
    """
    if is_postgres_url(db_url):
        connect_args = {}
        if sslmode:
            connect_args["sslmode"] = sslmode
        return create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=10,
            connect_args=connect_args,
            echo=False,
        )

    in_memory = db_url in ("sqlite://", "sqlite:///:memory:")
    if in_memory:
        # One shared connection, or every checkout would see a new empty database
        pool_args = {"poolclass": StaticPool}
    else:
        # Connection per session so each request gets its own transaction
        pool_args = {"poolclass": QueuePool, "pool_size": 5, "max_overflow": 10}
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False, "timeout": 10},
        echo=False,
        **pool_args,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not in_memory:
            # WAL mode for better concurrent access
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Usage:
        with session_scope(factory) as session:
            session.add(entry)
            # auto-commits on exit, rolls back on exception
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_database_exists(db_url: str) -> bool:
    """
    Ensure the PostgreSQL database exists, creating it if needed.

    Connects to the 'postgres' maintenance database to check/create.
    For SQLite, this is a no-op (file is created automatically).

    Returns:
        True if database was created, False if it already existed.
    """
    if not is_postgres_url(db_url):
        return False

    parsed = urlparse(db_url)
    target_db = parsed.path.lstrip("/")
    if not target_db:
        return False

    maintenance_url = urlunparse(parsed._replace(path="/postgres"))
    maintenance_engine = create_engine(maintenance_url, isolation_level="AUTOCOMMIT")

    try:
        with maintenance_engine.connect() as conn:
            result = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :dbname"),
                {"dbname": target_db}
            )
            if result.scalar() is not None:
                return False
            # CREATE DATABASE must run outside transaction (AUTOCOMMIT handles this)
            conn.execute(text(f'CREATE DATABASE "{target_db}"'))
            return True
    finally:
        maintenance_engine.dispose()


def init_db(engine: Engine) -> None:
    """Create all tables. Safe to call multiple times."""
    Base.metadata.create_all(bind=engine)


def drop_db(engine: Engine) -> None:
    """Drop all tables. Use with caution! Primarily for testing."""
    Base.metadata.drop_all(bind=engine)


def check_connection(engine: Engine) -> dict:
    """Check database connection and return status info."""
    try:
        with engine.connect() as conn:
            if engine.dialect.name == "postgresql":
                version = conn.execute(text("SELECT version()")).scalar()
                return {"status": "connected", "type": "postgres", "version": version}
            version = conn.execute(text("SELECT sqlite_version()")).scalar()
            return {"status": "connected", "type": "sqlite", "version": version}
    except Exception as e:
        return {"status": "error", "error": str(e)}
