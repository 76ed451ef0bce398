"""Async SQLAlchemy engine and session factory for the link store.

Session Ownership
=================
::
    request handler ──┐
    dispatcher worker ├──► LinkStore method ──► async with async_session()
    aggregator flush ─┘                              │
                                                     ▼
                                           own session / transaction,
                                           closed before returning

How to Use
===========
**Step 1 — Create tables at startup**::
    await init_db()

**Step 2 — Hand the factory to the store**::
    store = LinkStore(async_session)

**Step 3 — Release the pool at shutdown**::
    await close_db()

Key Behaviours
===============
- No request-scoped session dependency: background flushes and request
  handlers never share a session.
- pool_pre_ping drops dead connections before use.
- Tables are created with metadata.create_all; there are no migrations.

Classes:
    Base:  Declarative base for Link and Click.

Functions:
    init_db():  Create missing tables.
    close_db():  Dispose the engine and its pool.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "async_session", "engine", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
