"""Pytest fixtures for the API tests."""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from hub.api import app, get_analyzer, get_feed_client
from hub.db import create_schema, get_session
from tests.support import FakeAnalyzer, FakeFeedClient


async def _create_schema(engine):
    await create_schema(engine)
    await engine.dispose()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def feed():
    return FakeFeedClient()


@pytest.fixture
def client(tmp_path, analyzer, feed):
    """TestClient over a file-backed SQLite database and fake services."""
    # NullPool: TestClient runs requests on its own event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hub.db'}", poolclass=NullPool)
    asyncio.run(_create_schema(engine))
    maker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)

    async def override_session():
        async with maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_analyzer] = lambda: analyzer
    app.dependency_overrides[get_feed_client] = lambda: feed
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
