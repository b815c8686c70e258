"""Engine and session plumbing shared by the API, CLI and workers."""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSettings, get_settings
from db.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

REQUIRED_TABLES = (
    "core_entities",
    "core_dynamic_data",
    "universal_transactions",
    "ucr_deployments",
    "ucr_active_rules",
    "ucr_audit_events",
)


def get_engine() -> Engine:
    """The process-wide engine, created on first use."""
    global _engine

    if _engine is None:
        settings = get_settings()
        db: DatabaseSettings = settings.database
        opts: dict = {"echo": settings.debug}

        if db.is_sqlite:
            # the API and the simulation pool hand sessions across threads
            opts["connect_args"] = {"check_same_thread": False}
        else:
            opts.update(
                pool_size=db.pool_size,
                pool_timeout=db.pool_timeout,
                pool_recycle=db.pool_recycle,
                pool_pre_ping=True,
            )

        _engine = create_engine(db.url, **opts)
        if db.is_sqlite:
            install_sqlite_pragmas(_engine, db.sqlite_busy_timeout_ms)
        logger.info("Database engine ready: %s", db.describe())

    return _engine


def install_sqlite_pragmas(engine: Engine, busy_timeout_ms: int = 30000) -> None:
    """Per-connection SQLite setup: enforced foreign keys, WAL, and a busy wait for locked writers."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        cur = dbapi_conn.cursor()
        for pragma in (
            "foreign_keys=ON",
            "journal_mode=WAL",
            f"busy_timeout={int(busy_timeout_ms)}",
            "synchronous=NORMAL",
        ):
            cur.execute(f"PRAGMA {pragma}")
        cur.close()


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory

    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Session that commits on exit and rolls back if the block raises."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, committed when the handler returns."""
    with get_session() as session:
        yield session


def missing_tables(engine: Engine | None = None) -> list[str]:
    existing = set(inspect(engine or get_engine()).get_table_names())
    return [t for t in REQUIRED_TABLES if t not in existing]


def init_database(engine: Engine | None = None) -> None:
    """Create any missing UCR tables. Safe to call on every start."""
    engine = engine or get_engine()
    before: list[str] = missing_tables(engine)
    if before:
        Base.metadata.create_all(engine)
        logger.info("Created tables: %s", ", ".join(before))

    after: list[str] = missing_tables(engine)
    if after:
        raise RuntimeError(
            f"Tables still missing after create_all: {after} ({get_settings().database.describe()}). "
            "Run `alembic upgrade head` or `hera-ucr init-db`."
        )


def reset_engine() -> None:
    """Drop the cached engine and session factory (tests, settings reloads)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
