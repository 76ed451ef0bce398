"""Durable link store on top of async SQLAlchemy.

The store is the source of truth. It knows nothing about caching or expiry
policy: ``find_by_key`` returns the raw row and callers decide whether an
expired link must be treated as gone.

Write Paths
===========
::
    create_mapping ─────────► INSERT links            (1 tx)
    delete_mapping ─────────► DELETE clicks + links    (1 tx)
    record_click ───────────► INSERT clicks            (1 tx)
    batch_increment_counters► UPDATE links SET clicks = clicks + n
                              for every delta          (1 tx, all-or-nothing)

How to Use
===========
**Step 1 — Build from a session factory**::
    store = LinkStore(async_session)

**Step 2 — Read and write**::
    link = await store.find_by_key("abc123")
    await store.batch_increment_counters([ClickDelta(short_code="abc123", count=5)])

Key Behaviours
===============
- Each call opens a short-lived session of its own.
- Any SQLAlchemyError, and any connection-level OSError or timeout raised
  by the driver, is re-raised as StoreUnavailableError.
- Duplicate short codes raise LinkAlreadyExistsError.

Classes:
    LinkStore:  Link and click persistence.
"""

import asyncio
import datetime
import logging
from collections.abc import Sequence

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.exceptions import LinkAlreadyExistsError, StoreUnavailableError
from shortlink.models import Click, Link
from shortlink.schemas import ClickDelta

__all__ = ["STORE_BACKEND_ERRORS", "LinkStore"]

logger = logging.getLogger(__name__)

# asyncpg raises bare OSError subclasses (ConnectionRefusedError) when the server is unreachable.
STORE_BACKEND_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


class LinkStore:
    """Relational persistence for links and their click log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_key(self, short_code: str) -> Link | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Link).where(Link.short_code == short_code))
                return result.scalar_one_or_none()
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Lookup failed for {short_code}: {exc}") from exc

    async def create_mapping(self, link: Link) -> Link:
        try:
            async with self._session_factory() as session:
                session.add(link)
                await session.commit()
                await session.refresh(link)
                return link
        except IntegrityError as exc:
            raise LinkAlreadyExistsError(f"Short code '{link.short_code}' is already taken") from exc
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Create failed for {link.short_code}: {exc}") from exc

    async def delete_mapping(self, short_code: str) -> bool:
        """Delete a link together with its click history.

        Returns:
            bool: True if a link row was removed
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(Click).where(Click.short_code == short_code))
                    result = await session.execute(delete(Link).where(Link.short_code == short_code))
                    return result.rowcount > 0
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Delete failed for {short_code}: {exc}") from exc

    async def batch_increment_counters(self, deltas: Sequence[ClickDelta]) -> None:
        """Apply every delta in one transaction; a failure rolls back the whole batch."""
        if not deltas:
            return
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    for delta in deltas:
                        await session.execute(
                            update(Link)
                            .where(Link.short_code == delta.short_code)
                            .values(clicks=Link.clicks + delta.count)
                        )
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Batch increment of {len(deltas)} codes failed: {exc}") from exc

    async def record_click(self, short_code: str, ip_address: str, clicked_at: datetime.datetime) -> None:
        try:
            async with self._session_factory() as session:
                session.add(Click(short_code=short_code, ip_address=ip_address, clicked_at=clicked_at))
                await session.commit()
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Click insert failed for {short_code}: {exc}") from exc

    async def click_count(self, short_code: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count(Click.id)).where(Click.short_code == short_code)
                )
                return int(result.scalar_one())
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Click count failed for {short_code}: {exc}") from exc

    async def recent_clicks(self, short_code: str, limit: int = 5) -> list[Click]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Click)
                    .where(Click.short_code == short_code)
                    .order_by(Click.clicked_at.desc(), Click.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Recent clicks failed for {short_code}: {exc}") from exc

    async def popular_links(self, limit: int, now: datetime.datetime) -> list[Link]:
        """Most clicked links that are still live, for cache warmup."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Link)
                    .where((Link.expires_at.is_(None)) | (Link.expires_at > now))
                    .order_by(Link.clicks.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(f"Popular links query failed: {exc}") from exc

    async def ping(self) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except STORE_BACKEND_ERRORS as exc:
            raise StoreUnavailableError(str(exc)) from exc
