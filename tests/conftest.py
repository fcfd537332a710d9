"""
Pytest configuration for tests.

Sets up in-memory SQLite for all tests BEFORE any agentboard modules are
imported. Tests that need real concurrent writers build their own
file-backed engine under tmp_path.
"""
import os

# Force in-memory SQLite - MUST be before any agentboard imports
os.environ["AGENTBOARD_DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from sqlalchemy.orm import sessionmaker

import agentboard.database as db_module
from agentboard.config import BoardConfig
from agentboard.database import create_engine_for_url, init_db
from agentboard.events import EventBus
from agentboard.services.post_service import PostPipeline


def _test_config(**overrides) -> BoardConfig:
    """Return a BoardConfig with test defaults. Override any field."""
    defaults = dict(
        database_url="sqlite:///:memory:",
        agent_rate_limit_hour=100,
        agent_rate_limit_day=1000,
        agent_bytes_limit_day=100 * 1024 * 1024,
        max_threads_per_board=200,
        thread_prune_days=30,
        max_replies_per_thread=500,
        bump_limit=300,
        ip_rate_limit_enabled=True,
        ip_rate_limit_rpm=60,
        cleanup_interval_secs=300,
        prune_batch_size=500,
        event_webhook_url=None,
        write_retries=3,
        log_level="INFO",
    )
    defaults.update(overrides)
    return BoardConfig(**defaults)


@pytest.fixture
def test_config():
    return _test_config()


@pytest.fixture
def board_db(test_config):
    """Set up an in-memory SQLite database with the fixed boards."""
    db_module.reset_engine()

    engine = create_engine_for_url("sqlite:///:memory:")
    db_module._engine = engine
    db_module._SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )

    init_db(engine, config=test_config)

    yield engine

    db_module.reset_engine()


@pytest.fixture
def db_session(board_db):
    """Get a database session for direct DB manipulation in tests."""
    session = db_module.get_session()
    yield session
    session.close()


@pytest.fixture
def published():
    """Events delivered to an in-process subscriber."""
    return []


@pytest.fixture
def event_bus(published):
    bus = EventBus()
    bus.subscribe(published.append)
    return bus


@pytest.fixture
def pipeline(board_db, test_config, event_bus):
    return PostPipeline(
        session_factory=db_module.get_session_factory(),
        config=test_config,
        events=event_bus,
    )
