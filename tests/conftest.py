"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
Factories commit: the API client shares the single StaticPool connection,
and a request that fails rolls that connection back.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from teamleave.auth.models import UserSession
from teamleave.auth.service import create_access_token, hash_password, hash_token
from teamleave.common.constants import UserRole
from teamleave.common.rate_limit import limiter
from teamleave.config import settings
from teamleave.database import Base, get_db
from teamleave.main import create_app
from teamleave.users.models import User

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import teamleave.common.audit  # noqa: F401
import teamleave.leave.models  # noqa: F401

DEFAULT_PASSWORD = "secret123"
_DEFAULT_PASSWORD_HASH = hash_password(DEFAULT_PASSWORD)


# ── SQLite compat: compile PG-specific types to TEXT ────────────────

@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Clear slowapi's in-memory counters so tests don't share limits."""
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

@pytest.fixture
def make_user(db) -> Callable[..., Awaitable[User]]:
    """Return a coroutine factory that inserts and commits a User."""

    async def _make(
        *,
        name: str = "Test User",
        email: Optional[str] = None,
        role: UserRole = UserRole.user,
        quota: int = 20,
        remaining: Optional[Decimal] = None,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            name=name,
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            password_hash=_DEFAULT_PASSWORD_HASH,
            role=role,
            annual_leave_quota=quota,
            remaining_leaves=Decimal(quota) if remaining is None else remaining,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def password() -> str:
    """Plain-text password of every factory-made user."""
    return DEFAULT_PASSWORD


@pytest.fixture
async def test_user(make_user) -> User:
    return await make_user(name="Alice Employee", email="alice@example.com")


@pytest.fixture
async def test_admin(make_user) -> User:
    return await make_user(
        name="Bob Admin", email="bob.admin@example.com", role=UserRole.admin,
    )


# ── Auth helpers ────────────────────────────────────────────────────

@pytest.fixture
def headers_for(db) -> Callable[[User], Awaitable[dict[str, str]]]:
    """Return a factory producing Bearer headers backed by a persisted session."""

    async def _headers(user: User) -> dict[str, str]:
        token, _ = create_access_token(user.id, user.role)
        db.add(
            UserSession(
                id=uuid.uuid4(),
                user_id=user.id,
                token_hash=hash_token(token),
                expires_at=datetime.now(timezone.utc)
                + timedelta(hours=settings.JWT_EXPIRY_HOURS),
                is_revoked=False,
            )
        )
        await db.commit()
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def user_headers(headers_for, test_user) -> dict[str, str]:
    return await headers_for(test_user)


@pytest.fixture
async def admin_headers(headers_for, test_admin) -> dict[str, str]:
    return await headers_for(test_admin)
