"""
Tests for configuration loading: defaults, config.json, environment overrides.
"""
import json

import pytest

from prayer_wall import config


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty data dir and no backend-related environment."""
    for var in (
        "PRAYER_WALL_BACKEND", "PRAYER_WALL_DATABASE_URL", "DATABASE_URL", "PRAYER_WALL_DB_PATH",
        "PGSSLMODE", "GOOGLE_SHEETS_ID", "GOOGLE_SERVICE_ACCOUNT_EMAIL",
        "GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY", "GOOGLE_SHEET_CREDENTIALS", "PRAYER_WALL_EVENT_LOG",
        "PRAYER_WALL_RETENTION_DAYS",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("PRAYER_WALL_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PRAYER_WALL_DB_PATH", str(tmp_path / "wall.db"))
    config.clear_config_cache()
    yield tmp_path
    config.clear_config_cache()


def test_defaults_to_sqlite(clean_env):
    assert config.get_backend() == "sqlite"
    assert config.get_database_url() == f"sqlite:///{clean_env / 'wall.db'}"
    assert config.get_retention_days() == 60
    assert config.get_bcrypt_rounds() == 12


def test_database_url_selects_postgres(clean_env, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db.example.com:5432/wall")

    assert config.is_postgres()
    assert config.get_database_url() == "postgresql://user:pw@db.example.com:5432/wall"


def test_postgres_backend_requires_url(clean_env, monkeypatch):
    monkeypatch.setenv("PRAYER_WALL_BACKEND", "postgres")
    with pytest.raises(ValueError):
        config.get_database_url()


def test_invalid_backend(clean_env, monkeypatch):
    monkeypatch.setenv("PRAYER_WALL_BACKEND", "mongodb")
    with pytest.raises(ValueError):
        config.load_config()


def test_sheets_environment(clean_env, monkeypatch):
    monkeypatch.setenv("PRAYER_WALL_BACKEND", "sheets")
    monkeypatch.setenv("GOOGLE_SHEETS_ID", "sheet-key")
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", "svc@example.iam.gserviceaccount.com")
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY", "-----BEGIN-----\\nabc\\n-----END-----")
    monkeypatch.setenv("SHEETS_TAB_PENDING", "Queue")

    sheets = config.get_sheets_config()
    assert config.is_sheets()
    assert sheets["spreadsheet_id"] == "sheet-key"
    assert sheets["service_account_private_key"] == "-----BEGIN-----\nabc\n-----END-----"
    assert sheets["tabs"]["pending"] == "Queue"
    assert sheets["tabs"]["approved"] == "APPROVED"


def test_config_file_merged_under_environment(clean_env, monkeypatch):
    (clean_env / "config.json").write_text(json.dumps({
        "retention_days": 30,
        "ip_salt": "from-file",
        "sheets": {"tabs": {"logs": "Audit"}},
    }))
    monkeypatch.setenv("PRAYER_WALL_IP_SALT", "from-env")

    assert config.get_retention_days() == 30
    assert config.get_ip_salt() == "from-env"
    assert config.get_sheets_config()["tabs"]["logs"] == "Audit"
    assert config.get_sheets_config()["tabs"]["admins"] == "ADMINS"


def test_bad_config_file_falls_back_to_defaults(clean_env):
    (clean_env / "config.json").write_text("{not json")
    assert config.get_retention_days() == 60


def test_non_integer_retention_is_ignored(clean_env, monkeypatch):
    monkeypatch.setenv("PRAYER_WALL_RETENTION_DAYS", "forever")
    assert config.get_retention_days() == 60


def test_event_log_path(clean_env, monkeypatch):
    assert config.get_event_log_path() == clean_env / "logs" / "events.jsonl"
    monkeypatch.setenv("PRAYER_WALL_EVENT_LOG", str(clean_env / "custom.jsonl"))
    config.clear_config_cache()
    assert config.get_event_log_path() == clean_env / "custom.jsonl"


def test_config_is_cached(clean_env, monkeypatch):
    assert config.get_retention_days() == 60
    monkeypatch.setenv("PRAYER_WALL_RETENTION_DAYS", "5")
    assert config.get_retention_days() == 60
    config.clear_config_cache()
    assert config.get_retention_days() == 5
