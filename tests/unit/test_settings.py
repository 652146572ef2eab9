"""Unit tests for application settings."""

from pathlib import Path

import pytest

from shelfwatch.settings import AppSettings, get_settings


class TestAppSettings:
    """Tests for AppSettings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test defaults when no environment is set."""
        monkeypatch.chdir(tmp_path)
        settings = get_settings()

        assert settings.busy_timeout_ms == 5000
        assert settings.near_due_days == 3
        assert settings.report_days_back == 30
        assert settings.recent_items_days_back == 90
        assert settings.snapshot_retention_days is None
        assert settings.transition_retention_days is None

    def test_environment_prefix(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """Test SHELFWATCH_ variables override defaults."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("SHELFWATCH_DB_PATH", str(tmp_path / "x.sqlite"))
        monkeypatch.setenv("SHELFWATCH_NEAR_DUE_DAYS", "5")
        monkeypatch.setenv("SHELFWATCH_JSON_LOGS", "false")

        settings = AppSettings()

        assert settings.db_path == tmp_path / "x.sqlite"
        assert settings.near_due_days == 5
        assert settings.json_logs is False

    def test_env_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test values are read from a .env file in the working directory."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("SHELFWATCH_REPORT_DAYS_BACK=7\n")

        assert AppSettings().report_days_back == 7

    def test_retention_policy_keeps_everything_by_default(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """Test no retention is applied unless configured."""
        monkeypatch.chdir(tmp_path)
        assert AppSettings().retention_policy().is_noop

    def test_retention_policy_from_settings(self) -> None:
        """Test configured retention periods reach the policy."""
        settings = AppSettings(snapshot_retention_days=30, transition_retention_days=90)
        policy = settings.retention_policy()

        assert policy.snapshot_days == 30
        assert policy.transition_days == 90
