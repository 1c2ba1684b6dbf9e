"""
Database configuration and session management

The durable stores (seller origins, order sync records, quote log, provider
tokens) share one async engine. SQLite via aiosqlite is the default; pool
sizing only applies to server databases.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def create_engine_from_url(
    url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
    **kwargs,
) -> AsyncEngine:
    pool_config = {}
    if url.startswith("sqlite"):
        # File databases need their directory before first connect
        _, _, path = url.partition(":///")
        if path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
    else:
        pool_config = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": True,
        }
    pool_config.update(kwargs)
    return create_async_engine(url, echo=echo, future=True, **pool_config)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create every table registered on Base."""
    # Registers the models on Base.metadata
    from marketplace_shipping import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_db_session(session_factory: async_sessionmaker, commit: Optional[bool] = True):
    """
    Transactional session scope.

    Commits on clean exit, rolls back on any error so a failed write leaves
    the prior row state intact.

    Usage:
        async with get_db_session(factory) as db:
            db.add(row)
    """
    async with session_factory() as session:
        try:
            yield session
            if commit:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
