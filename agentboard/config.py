"""
Configuration for agentboard.

Config file: ~/.agentboard/config.json (directory overridable with
AGENTBOARD_DATA_DIR). Values are merged over defaults, then environment
variables win:

- AGENTBOARD_DATABASE_URL
- AGENT_RATE_LIMIT_HOUR / AGENT_RATE_LIMIT_DAY / AGENT_BYTES_LIMIT_DAY
- IP_RATE_LIMIT_ENABLED / IP_RATE_LIMIT_RPM
- CLEANUP_INTERVAL_SECS / PRUNE_BATCH_SIZE
- MAX_THREADS_PER_BOARD / THREAD_PRUNE_DAYS / MAX_REPLIES_PER_THREAD / BUMP_LIMIT
- AGENTBOARD_EVENT_WEBHOOK_URL
- AGENTBOARD_LOG_LEVEL
"""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".agentboard"
CONFIG_FILE_NAME = "config.json"

_DEFAULTS: Dict[str, Any] = {
    "database_url": None,  # None -> sqlite file in the data dir
    "agents": {
        "rate_limit_hour": 100,
        "rate_limit_day": 1000,
        "bytes_limit_day": 100 * 1024 * 1024,
    },
    "boards": {
        "max_threads_per_board": 200,
        "thread_prune_days": 30,
        "max_replies_per_thread": 500,
        "bump_limit": 300,
    },
    "security": {
        "ip_rate_limit_enabled": True,
        "ip_rate_limit_rpm": 60,
        "cleanup_interval_secs": 300,
        "prune_batch_size": 500,
    },
    "event_webhook_url": None,
    "write_retries": 3,
    "log_level": "INFO",
}

# env var -> (section, key, parser)
_ENV_OVERRIDES = {
    "AGENT_RATE_LIMIT_HOUR": ("agents", "rate_limit_hour", int),
    "AGENT_RATE_LIMIT_DAY": ("agents", "rate_limit_day", int),
    "AGENT_BYTES_LIMIT_DAY": ("agents", "bytes_limit_day", int),
    "MAX_THREADS_PER_BOARD": ("boards", "max_threads_per_board", int),
    "THREAD_PRUNE_DAYS": ("boards", "thread_prune_days", int),
    "MAX_REPLIES_PER_THREAD": ("boards", "max_replies_per_thread", int),
    "BUMP_LIMIT": ("boards", "bump_limit", int),
    "IP_RATE_LIMIT_RPM": ("security", "ip_rate_limit_rpm", int),
    "CLEANUP_INTERVAL_SECS": ("security", "cleanup_interval_secs", int),
    "PRUNE_BATCH_SIZE": ("security", "prune_batch_size", int),
}


@dataclass
class BoardConfig:
    """Runtime configuration, read-only once loaded."""
    database_url: Optional[str] = None
    agent_rate_limit_hour: int = 100
    agent_rate_limit_day: int = 1000
    agent_bytes_limit_day: int = 100 * 1024 * 1024
    max_threads_per_board: int = 200
    thread_prune_days: int = 30
    max_replies_per_thread: int = 500
    bump_limit: int = 300
    ip_rate_limit_enabled: bool = True
    ip_rate_limit_rpm: int = 60
    cleanup_interval_secs: int = 300
    prune_batch_size: int = 500
    event_webhook_url: Optional[str] = None
    write_retries: int = 3
    log_level: str = "INFO"


def get_data_dir() -> Path:
    """Get the data directory (not created)."""
    return Path(os.environ.get("AGENTBOARD_DATA_DIR", DEFAULT_DATA_DIR))


def get_config_path() -> Path:
    """Get the path to the config file."""
    return get_data_dir() / CONFIG_FILE_NAME


def ensure_data_dir() -> Path:
    """Create data directory if it doesn't exist."""
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _load_json_file(path: Path) -> dict:
    """Load a JSON file, return empty dict if missing or invalid."""
    try:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Could not load config from %s: %s", path, e)
    return {}


def _parse_bool(value: str) -> bool:
    if value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if value.strip().lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _apply_env(sections: Dict[str, Dict[str, Any]], name: str, section: str,
               key: str, parser: Callable[[str], Any]) -> None:
    """Override sections[section][key] from env var `name` if it parses."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return
    try:
        sections[section][key] = parser(raw)
    except ValueError:
        logger.warning("Ignoring unparseable %s=%r", name, raw)


def load_config() -> BoardConfig:
    """
    Load configuration.

    Merges defaults with config file values, then applies environment
    overrides. Unparseable env values are ignored with a warning.
    """
    data = _load_json_file(get_config_path())

    merged = {**_DEFAULTS, **data}
    sections = {
        name: {**_DEFAULTS[name], **(merged.get(name) or {})}
        for name in ("agents", "boards", "security")
    }

    for env_name, (section, key, parser) in _ENV_OVERRIDES.items():
        _apply_env(sections, env_name, section, key, parser)
    _apply_env(sections, "IP_RATE_LIMIT_ENABLED", "security",
               "ip_rate_limit_enabled", _parse_bool)

    database_url = os.environ.get("AGENTBOARD_DATABASE_URL") or merged.get("database_url")
    webhook_url = os.environ.get("AGENTBOARD_EVENT_WEBHOOK_URL") or merged.get("event_webhook_url")
    log_level = os.environ.get("AGENTBOARD_LOG_LEVEL") or merged.get("log_level", "INFO")

    agents = sections["agents"]
    boards = sections["boards"]
    security = sections["security"]

    return BoardConfig(
        database_url=database_url,
        agent_rate_limit_hour=agents["rate_limit_hour"],
        agent_rate_limit_day=agents["rate_limit_day"],
        agent_bytes_limit_day=agents["bytes_limit_day"],
        max_threads_per_board=boards["max_threads_per_board"],
        thread_prune_days=boards["thread_prune_days"],
        max_replies_per_thread=boards["max_replies_per_thread"],
        bump_limit=boards["bump_limit"],
        ip_rate_limit_enabled=security["ip_rate_limit_enabled"],
        ip_rate_limit_rpm=security["ip_rate_limit_rpm"],
        cleanup_interval_secs=security["cleanup_interval_secs"],
        prune_batch_size=security["prune_batch_size"],
        event_webhook_url=webhook_url,
        write_retries=merged.get("write_retries", _DEFAULTS["write_retries"]),
        log_level=str(log_level).upper(),
    )
