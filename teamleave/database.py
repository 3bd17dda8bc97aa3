"""Async engine, session factory and the per-request session dependency."""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from teamleave.config import settings


def _engine_options(url: str) -> dict:
    options: dict = {"echo": settings.ENVIRONMENT == "development"}
    # SQLite (local runs) has no connection pool to size
    if not url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=20, pool_pre_ping=True)
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield one session per request.

    Everything the handler flushes commits together when it returns, and is
    rolled back together if it raises.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
