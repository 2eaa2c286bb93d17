from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from socialbridge.core.config import Settings, get_settings
from socialbridge.db.base import Base
from socialbridge.db.models import PlatformCredential, User  # noqa: F401

_settings = get_settings()


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.database_echo, "future": True}
    if settings.database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    return options


engine = create_async_engine(_settings.database_url, **_engine_options(_settings))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session():
    async with async_session_maker() as session:
        yield session


async def init_models() -> None:
    """Create any missing tables for the credential store."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
