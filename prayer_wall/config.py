"""
Configuration for Prayer Wall.

Handles paths, defaults, JSON config file, and environment-based overrides.
Configuration is loaded from ~/.prayer-wall/config.json with sensible defaults.
The storage backend is chosen here once per process; it is not switchable at
runtime.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional


# Default data directory: ~/.prayer-wall/
DEFAULT_DATA_DIR = Path.home() / ".prayer-wall"
CONFIG_FILE_NAME = "config.json"

VALID_BACKENDS = ("sqlite", "postgres", "sheets")

DEFAULT_SHEET_TABS: Dict[str, str] = {
    "pending": "PENDING",
    "approved": "APPROVED",
    "expired": "EXPIRED",
    "rejected": "REJECTED",
    "admins": "ADMINS",
    "logs": "LOGS",
}

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "backend": None,  # Auto-detected: postgres if DATABASE_URL is set, else sqlite
    "db_path": "~/.prayer-wall/prayer-wall.db",
    "database_url": None,
    "pg_sslmode": None,
    "sheets": {
        "spreadsheet_id": None,
        "service_account_email": None,
        "service_account_private_key": None,
        "credentials_json": None,
        "tabs": DEFAULT_SHEET_TABS,
    },
    "ip_salt": "",
    "bcrypt_rounds": 12,
    "retention_days": 60,
    "event_log_path": None,  # Defaults to <data dir>/logs/events.jsonl
    "admin_username": None,
    "admin_password": None,
}

# Module-level config cache
_config_cache: Optional[Dict[str, Any]] = None


def get_data_dir() -> Path:
    """Get the data directory, honouring PRAYER_WALL_DATA_DIR."""
    return Path(os.environ.get("PRAYER_WALL_DATA_DIR", DEFAULT_DATA_DIR))


def get_config_path() -> Path:
    """Get the path to the config file."""
    return get_data_dir() / CONFIG_FILE_NAME


def _normalize_database_url(url: Optional[str]) -> Optional[str]:
    """Rewrite Heroku-style postgres:// URLs for SQLAlchemy."""
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _normalize_private_key(key: Optional[str]) -> Optional[str]:
    """Private keys pasted into env vars usually carry literal \\n sequences."""
    if not key:
        return key
    return key.replace("\\n", "\n")


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    """
    Apply environment variable overrides in place.

    - PRAYER_WALL_BACKEND: sqlite | postgres | sheets
    - PRAYER_WALL_DATABASE_URL / DATABASE_URL: PostgreSQL URL
    - PRAYER_WALL_DB_PATH: SQLite file path
    - PGSSLMODE: "disable" turns off TLS for PostgreSQL
    - GOOGLE_SHEETS_ID, GOOGLE_SERVICE_ACCOUNT_EMAIL,
      GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY, GOOGLE_SHEET_CREDENTIALS
    - SHEETS_TAB_<NAME>: override a worksheet title
    - PRAYER_WALL_IP_SALT, PRAYER_WALL_RETENTION_DAYS, PRAYER_WALL_EVENT_LOG
    - ADMIN_USERNAME / ADMIN_PASSWORD: initial administrator
    """
    env = os.environ

    if env.get("PRAYER_WALL_BACKEND"):
        config["backend"] = env["PRAYER_WALL_BACKEND"].strip().lower()

    database_url = env.get("PRAYER_WALL_DATABASE_URL") or env.get("DATABASE_URL")
    if database_url:
        config["database_url"] = database_url

    if env.get("PRAYER_WALL_DB_PATH"):
        config["db_path"] = env["PRAYER_WALL_DB_PATH"]

    if env.get("PGSSLMODE"):
        config["pg_sslmode"] = env["PGSSLMODE"]

    sheets = config["sheets"]
    if env.get("GOOGLE_SHEETS_ID"):
        sheets["spreadsheet_id"] = env["GOOGLE_SHEETS_ID"]
    if env.get("GOOGLE_SERVICE_ACCOUNT_EMAIL"):
        sheets["service_account_email"] = env["GOOGLE_SERVICE_ACCOUNT_EMAIL"]
    if env.get("GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY"):
        sheets["service_account_private_key"] = env["GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY"]
    if env.get("GOOGLE_SHEET_CREDENTIALS"):
        sheets["credentials_json"] = env["GOOGLE_SHEET_CREDENTIALS"]

    tabs = sheets["tabs"]
    for key in DEFAULT_SHEET_TABS:
        override = env.get(f"SHEETS_TAB_{key.upper()}")
        if override:
            tabs[key] = override

    if env.get("PRAYER_WALL_IP_SALT"):
        config["ip_salt"] = env["PRAYER_WALL_IP_SALT"]

    if env.get("PRAYER_WALL_RETENTION_DAYS"):
        try:
            config["retention_days"] = int(env["PRAYER_WALL_RETENTION_DAYS"])
        except ValueError:
            print(f"Warning: ignoring non-integer PRAYER_WALL_RETENTION_DAYS={env['PRAYER_WALL_RETENTION_DAYS']!r}")

    if env.get("PRAYER_WALL_EVENT_LOG"):
        config["event_log_path"] = env["PRAYER_WALL_EVENT_LOG"]

    if env.get("ADMIN_USERNAME"):
        config["admin_username"] = env["ADMIN_USERNAME"]
    if env.get("ADMIN_PASSWORD"):
        config["admin_password"] = env["ADMIN_PASSWORD"]


def load_config() -> Dict[str, Any]:
    """
    Load configuration from JSON file, with defaults for missing values.

    Environment variables override config file values (see
    _apply_env_overrides). The result is cached; call clear_config_cache()
    to force a reload.

    Returns:
        Dict containing configuration values
    """
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = get_config_path()

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                file_config = json.load(f)
            file_sheets = file_config.pop("sheets", None) or {}
            config.update(file_config)
            file_tabs = file_sheets.pop("tabs", None) or {}
            config["sheets"].update(file_sheets)
            config["sheets"]["tabs"].update(file_tabs)
        except (json.JSONDecodeError, IOError) as e:
            # Log but continue with defaults
            print(f"Warning: Could not load config from {config_path}: {e}")

    _apply_env_overrides(config)

    config["database_url"] = _normalize_database_url(config.get("database_url"))
    config["sheets"]["service_account_private_key"] = _normalize_private_key(
        config["sheets"].get("service_account_private_key")
    )

    if not config.get("backend"):
        url = config.get("database_url") or ""
        config["backend"] = "postgres" if url.startswith("postgresql") else "sqlite"

    if config["backend"] not in VALID_BACKENDS:
        raise ValueError(
            f"Invalid backend '{config['backend']}'. Must be one of: {list(VALID_BACKENDS)}"
        )

    _config_cache = config
    return config


def clear_config_cache() -> None:
    """Clear the config cache, forcing reload on next access."""
    global _config_cache
    _config_cache = None


def get_backend() -> str:
    """Get the configured storage backend name."""
    return load_config()["backend"]


def is_postgres() -> bool:
    """Check if the configured backend is PostgreSQL."""
    return get_backend() == "postgres"


def is_sheets() -> bool:
    """Check if the configured backend is the spreadsheet store."""
    return get_backend() == "sheets"


def get_db_path() -> Path:
    """
    Get the SQLite database path, expanding ~ and creating directory if needed.

    Returns:
        Path: Absolute path to the database file
    """
    config = load_config()
    db_path = Path(config.get("db_path", DEFAULT_CONFIG["db_path"])).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


def get_database_url() -> str:
    """
    Get the SQLAlchemy URL for the configured SQL backend.

    PostgreSQL uses database_url; SQLite is derived from db_path unless an
    explicit sqlite:// URL was configured.
    """
    config = load_config()
    url = config.get("database_url")
    if config["backend"] == "postgres":
        if not url:
            raise ValueError("Missing DATABASE_URL for the postgres backend.")
        return url
    if url and url.startswith("sqlite"):
        return url
    return f"sqlite:///{get_db_path()}"


def get_sheets_config() -> Dict[str, Any]:
    """Get the spreadsheet backend settings (ids, credentials, tab names)."""
    return load_config()["sheets"]


def get_ip_salt() -> str:
    """Get the salt mixed into submitter tokens."""
    return load_config().get("ip_salt") or ""


def get_bcrypt_rounds() -> int:
    """Get the bcrypt work factor for administrator passwords."""
    return int(load_config().get("bcrypt_rounds", DEFAULT_CONFIG["bcrypt_rounds"]))


def get_retention_days() -> int:
    """Get how long rejected and expired entries are kept."""
    return int(load_config().get("retention_days", DEFAULT_CONFIG["retention_days"]))


def get_event_log_path() -> Path:
    """Get the JSON-lines event log path."""
    configured = load_config().get("event_log_path")
    if configured:
        return Path(configured).expanduser()
    return get_data_dir() / "logs" / "events.jsonl"
