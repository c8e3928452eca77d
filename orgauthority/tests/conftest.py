import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))
os.environ.setdefault("DATABASE_DSN", "sqlite+aiosqlite://")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orgauthority.core import sessions
from orgauthority.core.settings import settings
from orgauthority.models import Base, User


@pytest_asyncio.fixture
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture(autouse=True)
def configure_settings(monkeypatch):
    monkeypatch.setattr(settings, "session_backend", "memory")
    monkeypatch.setattr(settings, "invitation_ttl_days", 7)
    monkeypatch.setattr(settings, "storage_retry_attempts", 3)
    monkeypatch.setattr(settings, "storage_retry_backoff_seconds", 0.01)
    return settings


@pytest.fixture(autouse=True)
def binding_store(monkeypatch):
    store = sessions.MemoryBindingStore()
    monkeypatch.setattr(sessions, "_store", store)
    return store


@pytest.fixture(autouse=True)
def patch_sessionlocal(monkeypatch, session_maker):
    monkeypatch.setattr("orgauthority.services.base.SessionLocal", session_maker)
    monkeypatch.setattr("orgauthority.workers.invitations_worker.SessionLocal", session_maker)
    return session_maker


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def user_factory(session_maker):
    """Users are created in their own session and handed out detached.

    A failed service call rolls back and expires everything in its session;
    detached callers keep their loaded id and email across such failures.
    """

    counter = {"value": 0}

    async def factory(**kwargs):
        counter["value"] += 1
        number = counter["value"]
        async with session_maker() as own_session:
            user = User(
                email=kwargs.get("email", f"user{number}@example.com"),
                name=kwargs.get("name", f"User {number}"),
                picture=kwargs.get("picture"),
            )
            own_session.add(user)
            await own_session.commit()
            await own_session.refresh(user)
        return user

    return factory
