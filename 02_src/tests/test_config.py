"""Tests for configuration helpers."""

import pytest

from agent_engine.config import (
    DEFAULT_DB_PATH,
    PROJECT_ROOT,
    CruiseSettings,
    StateMachineSettings,
    resolve_db_path,
)


class TestResolveDbPath:
    """Tests for resolve_db_path."""

    def test_default(self):
        """Test empty values fall back to the default database."""
        assert resolve_db_path(None) == DEFAULT_DB_PATH
        assert resolve_db_path("") == DEFAULT_DB_PATH

    def test_memory(self):
        """Test the in-memory database passes through."""
        assert resolve_db_path(":memory:") == ":memory:"

    def test_relative_path(self):
        """Test relative paths resolve against the project root."""
        assert resolve_db_path("03_data/test.db") == PROJECT_ROOT / "03_data" / "test.db"

    def test_absolute_path(self, tmp_path):
        """Test absolute paths are kept."""
        path = tmp_path / "agents.db"
        assert resolve_db_path(str(path)) == path


class TestCruiseSettings:
    """Tests for CruiseSettings.from_env."""

    ENV_VARS = (
        "CRUISE_TICK_INTERVAL_SECONDS",
        "CRUISE_MAX_CONCURRENT_CYCLES",
        "CRUISE_CALL_TIMEOUT_SECONDS",
        "CRUISE_SHUTDOWN_GRACE_SECONDS",
        "OPTIMIZER_MIN_IMPROVEMENT",
        "OPTIMIZER_PRICE_CACHE_TTL_SECONDS",
        "SCORING_SERVICE_URL",
        "TRANSACTION_SERVICE_URL",
        "AGENT_MEDIUM_RISK_DURATION_SECONDS",
        "AGENT_HIGH_RISK_DURATION_SECONDS",
        "AGENT_STATE_TIMEOUT_SECONDS",
        "AGENT_MAX_RECOVERY_ATTEMPTS",
        "AGENT_RECOVERY_CONFIRMATION_SECONDS",
        "AGENT_HISTORY_CAPACITY",
    )

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in self.ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        """Test defaults with no environment overrides."""
        settings = CruiseSettings.from_env()
        assert settings == CruiseSettings()
        assert settings.tick_interval_s == 300.0
        assert settings.state_machine == StateMachineSettings()
        assert settings.state_machine.max_recovery_attempts == 3

    def test_overrides(self, monkeypatch):
        """Test environment overrides."""
        monkeypatch.setenv("CRUISE_TICK_INTERVAL_SECONDS", "60")
        monkeypatch.setenv("CRUISE_MAX_CONCURRENT_CYCLES", "2")
        monkeypatch.setenv("SCORING_SERVICE_URL", "http://scoring:9000")
        monkeypatch.setenv("AGENT_HIGH_RISK_DURATION_SECONDS", "120.5")
        monkeypatch.setenv("AGENT_MAX_RECOVERY_ATTEMPTS", "5")

        settings = CruiseSettings.from_env()
        assert settings.tick_interval_s == 60.0
        assert settings.max_concurrent_cycles == 2
        assert settings.scoring_service_url == "http://scoring:9000"
        assert settings.state_machine.high_risk_duration_s == 120.5
        assert settings.state_machine.max_recovery_attempts == 5

    @pytest.mark.parametrize(
        "name, value",
        [
            ("CRUISE_TICK_INTERVAL_SECONDS", "soon"),
            ("CRUISE_CALL_TIMEOUT_SECONDS", "-1"),
            ("AGENT_MAX_RECOVERY_ATTEMPTS", "2.5"),
            ("AGENT_HISTORY_CAPACITY", "0"),
            ("CRUISE_MAX_CONCURRENT_CYCLES", "0"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        """Test malformed values are rejected with the variable name."""
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError, match=name):
            CruiseSettings.from_env()
