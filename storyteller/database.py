"""Engine and session management for the remote catalog store."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from storyteller.config.settings import DatabaseConfig

# Import models so they are attached to Base.metadata before table creation
from storyteller.models import Base
from storyteller.models import library  # noqa: F401

logger = logging.getLogger(__name__)


def create_engine(config: DatabaseConfig, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine with environment-appropriate pooling."""

    engine_options: dict[str, Any] = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    if config.serverless:
        # Disable pooling when working with serverless databases.
        engine_options["poolclass"] = NullPool

    return create_async_engine(config.url, **engine_options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create database tables if they do not exist."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Ensured catalog tables on %s.", engine.url.render_as_string(hide_password=True))


async def dispose_engine(engine: AsyncEngine) -> None:
    """Dispose of the engine and release pooled connections."""

    await engine.dispose()


__all__ = ["create_engine", "create_session_factory", "init_models", "dispose_engine"]
