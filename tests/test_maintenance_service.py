"""
Tests for retention cleanup, the digest, and dashboard stats.
"""
from datetime import date

import pytest

from prayer_wall.records import EntryRecord
from prayer_wall.services.maintenance_service import (
    build_digest,
    cleanup_old_data,
    generate_digest,
    get_stats,
)
from prayer_wall.services.moderation_service import ModerationService

ADMIN = "root"


@pytest.fixture
def service(storage, clock):
    return ModerationService(storage, clock=clock)


class TestCleanup:

    def _seed(self, service, clock):
        """One old rejected, one old expired, one fresh of each, one visible."""
        old_rejected = service.submit_entry(None, "old rejected", "a")
        service.reject(old_rejected, ADMIN)
        old_expired = service.submit_entry(None, "old expired", "b")
        service.approve(old_expired, ADMIN, duration_days=1)

        clock.advance(days=70)
        new_rejected = service.submit_entry(None, "new rejected", "c")
        service.reject(new_rejected, ADMIN)
        new_expired = service.submit_entry(None, "new expired", "d")
        service.approve(new_expired, ADMIN, duration_days=1)
        visible = service.submit_entry(None, "visible", "e")
        service.approve(visible, ADMIN, duration_days=30)

        clock.advance(days=2)
        return old_rejected, old_expired, new_rejected, new_expired, visible

    def test_dry_run_reports_without_deleting(self, service, storage, clock):
        old_rejected, old_expired, *_ = self._seed(service, clock)

        result = cleanup_old_data(storage, retention_days=60, now=clock.now)

        assert result["dry_run"] is True
        assert (result["rejected"], result["expired"]) == (1, 1)
        assert set(result["entry_ids"]) == {old_rejected, old_expired}
        assert service.get_entry(old_rejected) is not None

    def test_purges_only_old_rejected_and_expired(self, service, storage, clock):
        old_rejected, old_expired, new_rejected, new_expired, visible = self._seed(service, clock)
        audit_before = len(service.audit.recent(limit=1000))

        result = cleanup_old_data(storage, retention_days=60, now=clock.now, dry_run=False, audit=service.audit)

        assert (result["rejected"], result["expired"]) == (1, 1)
        assert service.get_entry(old_rejected) is None
        assert service.get_entry(old_expired) is None
        for entry_id in (new_rejected, new_expired, visible):
            assert service.get_entry(entry_id) is not None
        # Audit records are never pruned
        assert len(service.audit.recent(limit=1000)) == audit_before + 1

    def test_uses_configured_retention(self, service, storage, clock, monkeypatch):
        from prayer_wall.config import clear_config_cache
        monkeypatch.setenv("PRAYER_WALL_RETENTION_DAYS", "100")
        clear_config_cache()
        self._seed(service, clock)

        result = cleanup_old_data(storage, now=clock.now)
        assert (result["rejected"], result["expired"]) == (0, 0)


class TestDigest:

    def test_build_digest(self):
        entries = [
            EntryRecord(content="Short request", display_name="Ann"),
            EntryRecord(content="x" * 60),
        ]
        text = build_digest(entries, today=date(2024, 3, 1))

        lines = text.splitlines()
        assert lines[0] == "Prayer requests (2024-03-01)"
        assert lines[2] == "1. Ann: Short request"
        assert lines[3] == "2. Anonymous: " + "x" * 50 + "..."

    def test_generate_digest_lists_visible_and_audits(self, service, storage, clock):
        visible = service.submit_entry("Bo", "Visible one", "a")
        service.approve(visible, ADMIN)
        service.submit_entry(None, "Still pending", "b")

        text = generate_digest(storage, ADMIN, now=clock.now, audit=service.audit)

        assert "1. Bo: Visible one" in text
        assert "Still pending" not in text
        assert any(r.event_type == "digest.generate" for r in service.audit.recent())


def test_get_stats(service, storage, clock):
    approved = service.submit_entry(None, "one", "a")
    service.approve(approved, ADMIN)
    service.submit_entry(None, "two", "b")

    stats = get_stats(storage, now=clock.now)

    assert stats["backend"] == storage.name
    assert stats["connection"]["status"] == "connected"
    assert (stats["pending"], stats["approved"], stats["expired"], stats["rejected"]) == (1, 1, 0, 0)
