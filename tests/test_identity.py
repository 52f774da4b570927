"""
Tests for submitter token hashing.
"""
import hashlib

from prayer_wall.identity import hash_submitter


def test_deterministic_salted_sha256():
    expected = hashlib.sha256(b"203.0.113.9pepper").hexdigest()
    assert hash_submitter("203.0.113.9", salt="pepper") == expected
    assert hash_submitter("203.0.113.9", salt="pepper") == hash_submitter("203.0.113.9", salt="pepper")


def test_salt_changes_token():
    assert hash_submitter("203.0.113.9", salt="a") != hash_submitter("203.0.113.9", salt="b")


def test_uses_configured_salt():
    # conftest sets PRAYER_WALL_IP_SALT=test-salt
    expected = hashlib.sha256(b"203.0.113.9test-salt").hexdigest()
    assert hash_submitter("203.0.113.9") == expected


def test_missing_address():
    assert hash_submitter(None) is None
    assert hash_submitter("") is None
