import os

# must be set before app.main is imported
os.environ.setdefault("TELEMETRY_ENABLED", "false")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Import Base + all models so metadata is complete
import app.models  # noqa: F401
from app.core.config import settings
from app.core.db import get_db, get_sessionmaker
from app.main import app
from app.models.base import Base
from app.services import notifications
from app.services.entitlements import invalidate_plan_cache
from fixtures_seed import make_engine


@pytest.fixture
async def async_engine():
    engine = make_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def notifier(monkeypatch):
    """Records notifications instead of logging them; also resets process-wide caches."""
    # a single shared sqlite connection cannot interleave sweep sessions
    monkeypatch.setattr(settings, "sweep_concurrency", 1)
    monkeypatch.setattr(settings, "internal_admin_key", "test-internal")
    invalidate_plan_cache()

    recorder = notifications.RecordingNotifier()
    previous = notifications.set_notifier(recorder)
    yield recorder
    notifications.set_notifier(previous)
    invalidate_plan_cache()


@pytest.fixture
async def client(session_factory):
    """
    HTTP client whose requests get sessions from the test engine.
    """
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_sessionmaker] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
