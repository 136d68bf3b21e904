"""Shared fixtures: a fresh SQLite database per test, fake Redis, match builders."""

import os
import uuid
from datetime import datetime
from unittest.mock import AsyncMock

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("GATEWAY_SECRET", "test-gateway-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import models  # noqa: F401
from core.db import Base
from services import challenges

T0 = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dartlink.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def alice() -> uuid.UUID:
    return uuid.UUID("00000000-0000-0000-0000-00000000000a")


@pytest.fixture
def bob() -> uuid.UUID:
    return uuid.UUID("00000000-0000-0000-0000-00000000000b")


@pytest.fixture
def carol() -> uuid.UUID:
    return uuid.UUID("00000000-0000-0000-0000-00000000000c")


@pytest.fixture
def fake_redis():
    client = AsyncMock()
    client.xadd.return_value = "1-0"
    client.ping.return_value = True
    return client


@pytest.fixture
def start_match(db, alice, bob):
    """Build an in-progress match alice (challenger) vs bob at T0."""

    async def _start(match_format: int = 1, game_type: str = "501", now: datetime = T0):
        match = await challenges.create_challenge(db, alice, bob, match_format, game_type, now=now)
        await challenges.accept_challenge(db, match.id, bob, now=now)
        await challenges.confirm_join(db, match.id, alice, now=now)
        return await challenges.confirm_join(db, match.id, bob, now=now)

    return _start
