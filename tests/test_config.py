"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from street_kernel.config import KernelSettings


class TestKernelSettings:
    def test_defaults(self):
        settings = KernelSettings()
        assert settings.database_path == ":memory:"
        assert settings.offer_expiry_hours == 72

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("STREET_OFFER_EXPIRY_HOURS", "24")
        monkeypatch.setenv("street_pursuit_timeout_minutes", "45")
        settings = KernelSettings()
        assert settings.offer_expiry_hours == 24
        assert settings.pursuit_timeout_minutes == 45

    def test_unprefixed_env_ignored(self, monkeypatch):
        monkeypatch.setenv("OFFER_EXPIRY_HOURS", "5")
        assert KernelSettings().offer_expiry_hours == 72

    def test_settings_declared_with_config_dict(self):
        assert KernelSettings.model_config["env_prefix"] == "STREET_"
        assert KernelSettings.model_config["extra"] == "ignore"

    def test_bounds_enforced(self):
        with pytest.raises(ValidationError):
            KernelSettings(max_conflict_retries=0)
