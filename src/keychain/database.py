"""SQLAlchemy async engine, session setup and transaction scoping."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keychain.config import settings
from keychain.errors import TransactionFailure

logger = logging.getLogger(__name__)

# SQLSTATEs worth retrying: deadlock, serialization failure, lock not available.
# asyncpg errors arrive as plain DBAPIError, so OperationalError alone misses them.
TRANSIENT_SQLSTATES = frozenset({"40P01", "40001", "55P03"})


def configure_sqlite(engine: AsyncEngine) -> None:
    """Make SQLite emit BEGIN at transaction start.

    The sqlite3 driver defers BEGIN until the first DML statement, which
    breaks SAVEPOINT scoping. Taking over BEGIN gives SQLite the same
    transaction boundaries as PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying SQLite fixes when needed."""
    if url.startswith("sqlite"):
        new_engine = create_async_engine(url, echo=echo)
        configure_sqlite(new_engine)
        return new_engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.database_url, echo=settings.sql_echo)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the enclosed statements atomically.

    Opens a transaction when the session has none, or a SAVEPOINT when the
    caller already holds one, so the block commits or rolls back as a unit
    either way. Storage errors surface as ``TransactionFailure``.
    """
    scope = db.begin_nested() if db.in_transaction() else db.begin()
    try:
        async with scope:
            yield db
    except IntegrityError as exc:
        raise TransactionFailure(
            f"constraint violation: {exc.orig}", transient=False
        ) from exc
    except OperationalError as exc:
        raise TransactionFailure(
            f"transient storage failure: {exc.orig}", transient=True
        ) from exc
    except DBAPIError as exc:
        raise TransactionFailure(
            f"storage failure: {exc.orig}",
            transient=bool(exc.connection_invalidated) or _sqlstate(exc) in TRANSIENT_SQLSTATES,
        ) from exc
    except SQLAlchemyError as exc:
        raise TransactionFailure(f"storage failure: {exc}") from exc


def _sqlstate(exc: DBAPIError) -> str | None:
    return getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables. Intended for dev/test only — use Alembic in production."""
    from keychain.models.base import Base  # noqa: F811

    # Import all models so they register with Base.metadata
    import keychain.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose of the connection pool."""
    await engine.dispose()
    logger.debug("database.disposed")
