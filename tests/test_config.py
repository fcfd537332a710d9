"""
Tests for configuration loading: defaults, config file merge, env overrides.
"""
import json

import pytest

from agentboard.config import get_config_path, load_config

_ENV_VARS = [
    "AGENTBOARD_DATABASE_URL",
    "AGENT_RATE_LIMIT_HOUR",
    "AGENT_RATE_LIMIT_DAY",
    "AGENT_BYTES_LIMIT_DAY",
    "IP_RATE_LIMIT_ENABLED",
    "IP_RATE_LIMIT_RPM",
    "CLEANUP_INTERVAL_SECS",
    "PRUNE_BATCH_SIZE",
    "MAX_THREADS_PER_BOARD",
    "THREAD_PRUNE_DAYS",
    "MAX_REPLIES_PER_THREAD",
    "BUMP_LIMIT",
    "AGENTBOARD_EVENT_WEBHOOK_URL",
    "AGENTBOARD_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Point the data dir at tmp_path and clear every override."""
    monkeypatch.setenv("AGENTBOARD_DATA_DIR", str(tmp_path))
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield tmp_path


def _write_config(data):
    path = get_config_path()
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestDefaults:
    """No config file, no env: the documented defaults."""

    def test_defaults(self):
        config = load_config()
        assert config.database_url is None
        assert config.agent_rate_limit_hour == 100
        assert config.agent_rate_limit_day == 1000
        assert config.agent_bytes_limit_day == 100 * 1024 * 1024
        assert config.ip_rate_limit_enabled is True
        assert config.ip_rate_limit_rpm == 60
        assert config.cleanup_interval_secs == 300
        assert config.max_threads_per_board == 200
        assert config.thread_prune_days == 30
        assert config.max_replies_per_thread == 500
        assert config.bump_limit == 300
        assert config.write_retries == 3
        assert config.log_level == "INFO"

    def test_config_path_follows_data_dir(self, clean_env):
        assert get_config_path() == clean_env / "config.json"


class TestConfigFile:
    """Values from config.json are merged over defaults per section."""

    def test_partial_section_keeps_other_defaults(self):
        _write_config({"agents": {"rate_limit_day": 50}, "boards": {"bump_limit": 10}})
        config = load_config()
        assert config.agent_rate_limit_day == 50
        assert config.agent_rate_limit_hour == 100
        assert config.bump_limit == 10
        assert config.max_replies_per_thread == 500

    def test_top_level_values(self):
        _write_config({
            "database_url": "postgresql://localhost/agentboard",
            "event_webhook_url": "http://relay.local/events",
            "write_retries": 5,
            "log_level": "debug",
        })
        config = load_config()
        assert config.database_url == "postgresql://localhost/agentboard"
        assert config.event_webhook_url == "http://relay.local/events"
        assert config.write_retries == 5
        assert config.log_level == "DEBUG"

    def test_invalid_json_falls_back_to_defaults(self):
        get_config_path().write_text("{not json", encoding="utf-8")
        config = load_config()
        assert config.agent_rate_limit_day == 1000


class TestEnvOverrides:
    """Environment variables win over the config file."""

    def test_env_beats_file(self, monkeypatch):
        _write_config({"agents": {"rate_limit_day": 50}})
        monkeypatch.setenv("AGENT_RATE_LIMIT_DAY", "7")
        assert load_config().agent_rate_limit_day == 7

    def test_all_numeric_overrides(self, monkeypatch):
        monkeypatch.setenv("AGENT_RATE_LIMIT_HOUR", "11")
        monkeypatch.setenv("AGENT_BYTES_LIMIT_DAY", "2048")
        monkeypatch.setenv("IP_RATE_LIMIT_RPM", "5")
        monkeypatch.setenv("CLEANUP_INTERVAL_SECS", "9")
        monkeypatch.setenv("PRUNE_BATCH_SIZE", "3")
        monkeypatch.setenv("MAX_THREADS_PER_BOARD", "4")
        monkeypatch.setenv("THREAD_PRUNE_DAYS", "2")
        monkeypatch.setenv("MAX_REPLIES_PER_THREAD", "8")
        monkeypatch.setenv("BUMP_LIMIT", "6")
        config = load_config()
        assert config.agent_rate_limit_hour == 11
        assert config.agent_bytes_limit_day == 2048
        assert config.ip_rate_limit_rpm == 5
        assert config.cleanup_interval_secs == 9
        assert config.prune_batch_size == 3
        assert config.max_threads_per_board == 4
        assert config.thread_prune_days == 2
        assert config.max_replies_per_thread == 8
        assert config.bump_limit == 6

    def test_unparseable_value_is_ignored(self, monkeypatch):
        monkeypatch.setenv("AGENT_RATE_LIMIT_DAY", "lots")
        assert load_config().agent_rate_limit_day == 1000

    @pytest.mark.parametrize("raw,expected", [
        ("false", False), ("0", False), ("off", False),
        ("true", True), ("1", True), ("maybe", True),
    ])
    def test_ip_rate_limit_enabled(self, monkeypatch, raw, expected):
        monkeypatch.setenv("IP_RATE_LIMIT_ENABLED", raw)
        assert load_config().ip_rate_limit_enabled is expected

    def test_string_overrides(self, monkeypatch):
        monkeypatch.setenv("AGENTBOARD_DATABASE_URL", "sqlite:////tmp/x.db")
        monkeypatch.setenv("AGENTBOARD_EVENT_WEBHOOK_URL", "http://relay/e")
        monkeypatch.setenv("AGENTBOARD_LOG_LEVEL", "warning")
        config = load_config()
        assert config.database_url == "sqlite:////tmp/x.db"
        assert config.event_webhook_url == "http://relay/e"
        assert config.log_level == "WARNING"
