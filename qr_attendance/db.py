from __future__ import annotations
from typing import Any, AsyncGenerator, Dict
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from .core.config import get_settings
from .models import Base

settings = get_settings()

def _engine_options(url: str) -> Dict[str, Any]:
    # aiosqlite connections belong to the loop that opened them; don't pool them
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {"pool_pre_ping": True}

engine = create_async_engine(settings.database_url, echo=False, future=True, **_engine_options(settings.database_url))
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session

async def ping_db() -> Dict[str, Any]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"ok": True, "database": engine.dialect.name}
    except Exception as exc:
        return {"ok": False, "error": str(exc)}
