"""
tests/test_settings.py
Settings load from the environment with only the keys the service reads.
"""

import pytest
from pydantic import ValidationError

from config.settings import Settings


def test_settings_load_with_database_and_jwt_keys_only(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("JWT_SECRET_KEY", "jwt-only")

    loaded = Settings(_env_file=None)

    assert loaded.JWT_SECRET_KEY == "jwt-only"
    assert not hasattr(loaded, "SECRET_KEY")
    assert loaded.DEFAULT_REQUIRED_STAFF_COUNT == 2
    assert loaded.ALLOW_OVER_QUORUM_ACCEPT is True


def test_default_staff_count_must_be_positive(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("JWT_SECRET_KEY", "jwt-only")
    monkeypatch.setenv("DEFAULT_REQUIRED_STAFF_COUNT", "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
