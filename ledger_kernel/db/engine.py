"""
Module: ledger_kernel.db.engine
Responsibility: The process-wide database handle.  Builds the SQLAlchemy
    engine from a URL, hands out sessions, and wraps units of work in
    ``session_scope()``.
Architecture position: Kernel > DB.  ``create_tables`` imports the models so
    ``Base.metadata`` knows every ledger table.

Invariants enforced:
    - Kernel services only flush.  ``session_scope()`` is where a unit of
      work commits, so an entry-set, its lines and its allocations land
      together or not at all.
    - Server databases get a pre-pinged QueuePool at READ COMMITTED; the
      per-debtor locks in ``services/debtor_lock.py`` serialize allocation
      within one process.
    - SQLite serves tests and single-user books.  In-memory URLs share one
      connection (StaticPool) so every session sees the same data.

Failure modes:
    - RuntimeError when a session or the engine is requested before
      ``init_engine_from_url()``.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _engine_options(url: URL, echo: bool, pool: dict[str, Any]) -> dict[str, Any]:
    if url.get_backend_name() != "sqlite":
        return {"echo": echo, "poolclass": QueuePool, "isolation_level": "READ COMMITTED", **pool}
    options: dict[str, Any] = {"echo": echo, "connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Point the ledger at ``database_url``, replacing any previous engine.

    The pool arguments apply to server databases only.
    """
    global _engine, _sessions

    reset_engine()
    url = make_url(database_url)
    _engine = create_engine(
        url,
        **_engine_options(
            url,
            echo,
            {
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "pool_pre_ping": pool_pre_ping,
                "pool_timeout": pool_timeout,
                "pool_recycle": pool_recycle,
            },
        ),
    )
    _sessions = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "database": url.database, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """A new session bound to the current engine; the caller closes it."""
    if _sessions is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _sessions()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    One unit of work: commit on success, roll back on any exception.

    Usage:
        with session_scope() as session:
            engine = PostingEngine(session, AccountRegistry(session))
            engine.post(draft, acting_user="clerk-01")
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"error_type": type(exc).__name__, "error_message": str(exc)},
        )
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create any ledger tables that do not exist yet and seed the posting counter."""
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401  (registers all tables)
    from ledger_kernel.services.sequence_service import SequenceService

    Base.metadata.create_all(get_engine())
    with session_scope() as session:
        SequenceService(session).ensure_counter()
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _sessions

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None


atexit.register(reset_engine)
