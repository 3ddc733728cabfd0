"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from puipr.config import get_settings
from puipr.database import close_db, get_engine, get_session_factory, init_db
from puipr.db.schema import ensure_schema
from puipr.main import create_app


@pytest.fixture(autouse=True)
def test_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point every test at its own SQLite file with the poller and token disabled."""
    for key in list(os.environ):
        if key.upper().startswith("PUIPR_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("PUIPR_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'puipr.db'}")
    monkeypatch.setenv("PUIPR_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """A session on a freshly bootstrapped database."""
    await init_db(get_settings().database_url)
    await ensure_schema(get_engine())
    async with get_session_factory()() as session:
        yield session
    await close_db()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, sharing the test database."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
