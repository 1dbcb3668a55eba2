"""Database engine, session factory and FastAPI session dependency."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from costguard.core.config import Settings
from costguard.core.errors import StoreNotConfigured

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Database:
    """Explicit store handle: one engine plus its session factory."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(
            url, echo=echo, pool_pre_ping=True, **engine_kwargs
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database | None":
        """Build a handle from settings, or None when no DATABASE_URL is set."""
        if not settings.DATABASE_URL:
            logger.warning("database.not_configured")
            return None
        return cls(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session from the app's Database handle.

    Raises:
        StoreNotConfigured: If the application was started without a database
    """
    database: Database | None = getattr(request.app.state, "database", None)
    if database is None:
        raise StoreNotConfigured()

    async with database.session() as session:
        yield session
