"""
Engine and session management for the settlement database.

One module-level engine is bound by ``init_engine_from_url()``; every other
component takes sessions from ``get_session_factory()`` (the lock manager
and each worker thread use their own sessions).

Backends:
    - PostgreSQL (psycopg2) in production: READ COMMITTED, QueuePool,
      pre-ping and connection recycling.
    - SQLite for tests and local runs.  pysqlite's implicit BEGIN is
      replaced by BEGIN IMMEDIATE, so writers queue on the busy timeout
      instead of failing on lock upgrade and SAVEPOINTs nest correctly.

A settlement is one ``session_scope()``: commit on normal exit, rollback
and re-raise on any exception.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from settlement_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _dialect_options(
    backend: str,
    *,
    pool_pre_ping: bool,
    pool_recycle: int,
    sqlite_busy_timeout: float,
) -> dict[str, Any]:
    if backend == "sqlite":
        return {
            "connect_args": {"check_same_thread": False, "timeout": sqlite_busy_timeout},
        }
    return {
        "pool_pre_ping": pool_pre_ping,
        "pool_recycle": pool_recycle,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Calling it again replaces the previous engine.  Sessions never expire
    attributes on commit, so settled rows can be read after their scope
    closes.
    """
    global _engine, _SessionFactory

    backend = make_url(database_url).get_backend_name()
    _engine = create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        **_dialect_options(
            backend,
            pool_pre_ping=pool_pre_ping,
            pool_recycle=pool_recycle,
            sqlite_busy_timeout=sqlite_busy_timeout,
        ),
    )
    if backend == "sqlite":
        _use_immediate_transactions(_engine)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": backend, "pool_size": pool_size, "max_overflow": max_overflow},
    )
    return _engine


def _use_immediate_transactions(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    return _require_factory()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Unit of work: commit on success, rollback and re-raise on failure.

    Uses ``session_factory`` when given, otherwise the module factory::

        with session_scope(factory) as session:
            session.add(tx)
    """
    session = (session_factory or _require_factory())()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.debug("transaction_rolled_back", extra={"error_type": type(exc).__name__})
        raise
    finally:
        session.close()


def _all_metadata():
    from settlement_kernel.db.base import Base
    import settlement_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    _all_metadata().create_all(get_engine())


def drop_tables() -> None:
    _all_metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
