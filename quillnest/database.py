"""
Quillnest Backend — Database Session Management
==================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
How:   `create_app()` constructs one `Database` and stores it on
       `app.state.database`. The `get_db_session` dependency pulls a fresh
       session from it per request, commits on success and rolls back on error.
Who:   Used by route handlers via FastAPI's dependency injection system.

There is no module-level engine. Every service that touches the database
receives the session as an argument, and the session comes from the
`Database` instance owned by the running application. Tests build their own
`Database` against a temporary SQLite file.

Connection Pooling Strategy (PostgreSQL):
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:     Validates connections before use
    pool_recycle=3600: Recycles connections every hour
    SQLite URLs get the dialect's default pool and foreign keys switched on.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class so they share one metadata object,
    which Alembic reads for migrations and tests use for `create_all`.
    """
    pass


def _on_sqlite_connect(dbapi_connection, connection_record) -> None:
    # SQLite ships with foreign key enforcement off
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # The driver's implicit BEGIN breaks SAVEPOINT; BEGIN is emitted in _on_sqlite_begin
    dbapi_connection.isolation_level = None


def _on_sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


class Database:
    """
    Owns the async engine and session factory for one application instance.

    Args:
        url:          SQLAlchemy async URL (postgresql+asyncpg://, sqlite+aiosqlite://)
        pool_size:    Persistent pooled connections (ignored for SQLite)
        max_overflow: Extra connections for spikes (ignored for SQLite)
        pool_pre_ping: Validate connections before use (ignored for SQLite)
        echo:         Log every SQL statement
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        echo: bool = False,
    ):
        self.url = url
        self.is_sqlite = url.startswith("sqlite")

        engine_kwargs = {"echo": echo}
        if not self.is_sqlite:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                pool_recycle=3600,
            )

        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _on_sqlite_connect)
            event.listen(self.engine.sync_engine, "begin", _on_sqlite_begin)

        # expire_on_commit=False: response schemas read attributes after the
        # dependency has committed
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            url=settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            echo=settings.log_level == "DEBUG",
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Yield one session; commit on success, roll back on any error.

        The broad `except Exception` only decides between commit and rollback;
        the exception is always re-raised for the global handlers.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def create_all(self) -> None:
        """Create every table known to `Base.metadata` (tests and local dev)."""
        # Model modules must be imported so their tables are registered
        from quillnest import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close all pooled connections (application shutdown)."""
        await self.engine.dispose()


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Example usage in a route:
        @router.get("/post/get-posts")
        async def get_posts(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
