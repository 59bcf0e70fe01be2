"""
Database connection and session management.
Uses asyncpg (Postgres) or aiosqlite with SQLAlchemy async.

The Database object is constructed once at process start (FastAPI lifespan,
or a worker run) and handed to whoever needs sessions.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def normalize_database_url(url: str) -> str:
    """Strip sslmode from URL (asyncpg doesn't support it as query param)."""
    if "?sslmode=" in url:
        url = url.split("?sslmode=")[0]
    elif "&sslmode=" in url:
        url = url.replace("&sslmode=require", "").replace("&sslmode=disable", "")
    return url


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        self.url = normalize_database_url(url)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=echo,
            **engine_kwargs,
        )
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build the engine with pool options for server databases."""
        url = normalize_database_url(settings.database_url)
        kwargs = {}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_pre_ping=True,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
            )
            if "neon.tech" in url or "sslmode=require" in settings.database_url:
                kwargs["connect_args"] = {"ssl": True}
        return cls(url, echo=settings.debug, **kwargs)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for a session (for use outside FastAPI)."""
        async with self.session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create tables for all registered models."""
        import app.models  # noqa: F401  (register mappers)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close database connections."""
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    database: Optional[Database] = getattr(request.app.state, "db", None)
    if database is None:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

    async with database.session() as session:
        yield session
