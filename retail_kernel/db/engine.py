"""
Engine and session lifecycle for the kernel.

One process-wide engine is built by ``init_engine_from_url``.  PostgreSQL
runs pooled at READ COMMITTED; SQLite (tests, local tooling) is switched to
explicit BEGIN so SAVEPOINTs nest the same way.  Services receive a
``Session`` and never commit; ``session_scope`` owns the commit, and
``atomic`` wraps a unit of work in a savepoint with an optional deadline.
"""

import atexit
import time
from contextlib import contextmanager
from typing import Any, Callable, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from retail_kernel.exceptions import TransactionTimeoutError
from retail_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# SQLSTATE query_canceled, raised when statement_timeout fires
_PG_QUERY_CANCELED = "57014"

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_kwargs(url: URL, echo: bool) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": echo, "connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # one shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    return kwargs


def _install_sqlite_begin(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build the process-wide engine and session factory.

    Pool settings apply to PostgreSQL only.  Calling again replaces the
    previous engine.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        engine = create_engine(url, **_sqlite_kwargs(url, echo))
        _install_sqlite_begin(engine)
    else:
        engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": backend, "pool_size": pool_size, "max_overflow": max_overflow},
    )
    return engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_engine() -> Engine:
    return _require_engine()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per worker."""
    _require_engine()
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on success, roll back on any exception, always close::

        with session_scope() as session:
            AllocationService(session).allocate_batch_to_store(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _is_statement_timeout(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) == _PG_QUERY_CANCELED


@contextmanager
def atomic(
    session: Session,
    *,
    operation: str,
    timeout_seconds: float | None = None,
    monotonic: Callable[[], float] = time.monotonic,
) -> Generator[Session, None, None]:
    """
    Run a block inside a SAVEPOINT with an optional deadline.

    Everything flushed inside the block is released together or rolled back
    together.  The deadline is checked after the final flush; on PostgreSQL
    each statement is additionally bounded by ``SET LOCAL statement_timeout``.
    The outer transaction is left to the caller.

    Raises:
        TransactionTimeoutError: deadline exceeded (block rolled back).
    """
    started = monotonic()
    savepoint = session.begin_nested()
    try:
        if timeout_seconds is not None and session.get_bind().dialect.name == "postgresql":
            session.execute(
                text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}")
            )
        yield session
        session.flush()
        elapsed = monotonic() - started
        if timeout_seconds is not None and elapsed > timeout_seconds:
            raise TransactionTimeoutError(operation, timeout_seconds)
    except OperationalError as exc:
        savepoint.rollback()
        if _is_statement_timeout(exc):
            logger.warning(
                "atomic_statement_timeout",
                extra={"operation": operation, "timeout_seconds": timeout_seconds},
            )
            raise TransactionTimeoutError(operation, timeout_seconds or 0) from exc
        raise
    except Exception:
        savepoint.rollback()
        logger.warning(
            "atomic_rolled_back",
            extra={"operation": operation},
            exc_info=True,
        )
        raise
    savepoint.commit()


def _model_metadata():
    # models must be imported so every table is registered on Base.metadata
    import retail_kernel.models  # noqa: F401
    from retail_kernel.db.base import Base

    return Base.metadata


def create_tables() -> None:
    _model_metadata().create_all(_require_engine())


def drop_tables() -> None:
    _model_metadata().drop_all(_require_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
