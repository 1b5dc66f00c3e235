"""Settings loading tests."""

from __future__ import annotations

import pytest

from watchbadges.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(monkeypatch):
    monkeypatch.delenv("WATCHBADGES_BATCH_DELAY_SECONDS", raising=False)
    settings = Settings(_env_file=None)
    assert settings.batch_delay_seconds == 1.0
    assert settings.quickwatch_hours_after_release == 24.0
    assert settings.binge_window_minutes == 120.0
    assert settings.snapshot_ttl_seconds == 300
    assert settings.emit_binge_activity is False


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("WATCHBADGES_BATCH_DELAY_SECONDS", "2.5")
    monkeypatch.setenv("WATCHBADGES_EMIT_BINGE_ACTIVITY", "true")
    settings = get_settings()
    assert settings.batch_delay_seconds == 2.5
    assert settings.emit_binge_activity is True


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
