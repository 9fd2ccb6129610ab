"""Async database setup: engine, session factory and schema creation.

Connection details come from ``DB_URL``; Postgres (asyncpg) in deployments,
SQLite (aiosqlite) for local runs and tests.
"""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .models import Base


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine; connection liveness is checked on checkout."""
    return create_async_engine(
        url or settings.db.url,
        echo=settings.db.echo,
        pool_pre_ping=True,
        **kwargs,
    )


engine: AsyncEngine = build_engine()

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def create_schema(bind: AsyncEngine | None = None, *, drop: bool = False) -> list[str]:
    """Create all tables, optionally dropping existing ones first.

    Returns:
        Names of the tables in the schema
    """
    bind = bind or engine
    async with bind.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    return list(Base.metadata.tables.keys())


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI-friendly async session dependency.

    Usage:
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """

    async with AsyncSessionMaker() as session:
        yield session
