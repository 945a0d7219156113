"""
Tests for environment-based settings.
"""

from stackcompose.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STACKCOMPOSE_MAX_WORKERS", raising=False)
        monkeypatch.delenv("STACKCOMPOSE_PROVISIONING_BACKEND", raising=False)

        settings = Settings(_env_file=None)

        assert settings.MAX_WORKERS == 4
        assert settings.PROVISIONING_BACKEND == "local"
        assert settings.LOG_JSON is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("STACKCOMPOSE_MAX_WORKERS", "1")
        monkeypatch.setenv("STACKCOMPOSE_LOG_JSON", "false")

        settings = Settings(_env_file=None)

        assert settings.MAX_WORKERS == 1
        assert settings.LOG_JSON is False
