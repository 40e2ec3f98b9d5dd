"""Async engine and session factory for the reply catalogue."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from whatsapp_autoreply.config import settings
from whatsapp_autoreply.models.reply import Base

engine = create_async_engine(settings.database_url, echo=settings.sql_echo)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create the enterprises / messages / prompt tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()

