"""
Database connection for agentboard.

SQLite at ~/.agentboard/board.db by default; any SQLAlchemy URL (e.g.
PostgreSQL) can be configured with AGENTBOARD_DATABASE_URL.

File-backed SQLite engines open every transaction with BEGIN IMMEDIATE so
that writers serialize on the database lock instead of failing on a
SHARED -> RESERVED upgrade. PostgreSQL relies on row locks (FOR UPDATE and
the atomic counter UPDATE) instead.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool

from agentboard.config import BoardConfig, ensure_data_dir, load_config
from agentboard.models import Base

logger = logging.getLogger(__name__)

_engine = None
_SessionLocal = None

SQLITE_BUSY_TIMEOUT_SECS = 30


def _default_db_url() -> str:
    """Get URL of the default SQLite database, creating its directory if needed."""
    return f"sqlite:///{ensure_data_dir() / 'board.db'}"


def _is_sqlite_memory(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///") or ":memory:" in db_url


def create_engine_for_url(db_url: str) -> Engine:
    """Create an engine with the pool and connect hooks appropriate for db_url."""
    if db_url.startswith("postgresql") or db_url.startswith("postgres"):
        return create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )

    if _is_sqlite_memory(db_url):
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECS},
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def disable_pysqlite_begin(dbapi_connection, connection_record):
            # we emit BEGIN ourselves below
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def get_engine(db_url: Optional[str] = None):
    """Get SQLAlchemy engine. Accepts optional URL override for testing."""
    global _engine

    if _engine is not None:
        return _engine

    if db_url is None:
        db_url = load_config().database_url or _default_db_url()

    _engine = create_engine_for_url(db_url)
    return _engine


def get_session_factory():
    """Get session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine()
        )
    return _SessionLocal


def get_session() -> Session:
    """Get a new database session."""
    return get_session_factory()()


@contextmanager
def session_scope(session_factory=None) -> Generator[Session, None, None]:
    """Transactional scope: auto-commits on success, rolls back on exception."""
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine=None, config: Optional[BoardConfig] = None):
    """
    Create all tables and provision the fixed board set.

    Safe to call multiple times: existing tables are left alone and existing
    boards only get their thread limits refreshed from config.
    """
    from agentboard.boards import provision_boards

    eng = engine or get_engine()
    Base.metadata.create_all(bind=eng)

    factory = sessionmaker(autocommit=False, autoflush=False, bind=eng)
    with session_scope(factory) as session:
        created = provision_boards(session, config or load_config())
    if created:
        logger.info("Provisioned %d boards", created)


def reset_engine():
    """Reset engine and session factory (for testing)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionLocal = None


def check_connection() -> dict:
    """Check database connection and return status info."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            if engine.dialect.name == "sqlite":
                version = conn.execute(text("SELECT sqlite_version()")).scalar()
            else:
                version = conn.execute(text("SELECT version()")).scalar()
        return {"status": "connected", "type": engine.dialect.name, "version": version}
    except Exception as e:
        return {"status": "error", "error": str(e)}
