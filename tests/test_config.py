"""Tests for the settings groups and the startup settings check."""

import pytest

from budgee.config import SecuritySettings, get_settings, validate_all_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestValidateAllSettings:

    def test_defaults_are_valid(self):
        """Test every settings group loads with no environment overrides."""
        results = validate_all_settings()
        assert results == {
            "storage": True,
            "security": True,
            "ledger": True,
            "limits": True,
            "assistant": True,
            "app": True,
        }

    def test_invalid_group_is_reported(self, monkeypatch):
        """Test a bad value fails only its own group and carries the error."""
        monkeypatch.setenv("BUDGEE_PIN_MAX_FAILED_ATTEMPTS", "0")
        results = validate_all_settings()
        assert results["security"] is False
        assert "max_failed_attempts" in results["security_error"]
        assert results["ledger"] is True
        assert "ledger_error" not in results

    def test_env_overrides_apply(self, monkeypatch):
        """Test prefixed environment variables reach their group."""
        monkeypatch.setenv("BUDGEE_PIN_LOCKOUT_MINUTES", "30")
        assert SecuritySettings().lockout_minutes == 30
        assert validate_all_settings()["security"] is True
