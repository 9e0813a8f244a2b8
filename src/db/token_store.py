"""Persistent token store — one row per token under observation.

The lifecycle monitor is the only writer. Every mutation runs in its own short
transaction under a store-wide asyncio.Lock, so concurrent loops (stream
consumer, poll sweep, cleanup sweep) never observe partial updates. Callers
must not hold the store across network I/O: read, await the call, write back.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from types import TracebackType

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.models.base import Base
from src.models.token import TokenStatus, TrackedToken, utcnow


def _sanitize(val: str | None) -> str | None:
    """Strip null bytes and control chars that PostgreSQL rejects."""
    if val is None:
        return None
    return val.replace("\x00", "").strip() or None


class TokenStore:
    """Async SQLAlchemy-backed store. Open once at startup, close once at exit."""

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self._url = database_url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> TokenStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def open(self) -> None:
        try:
            kwargs: dict = {"echo": self._echo}
            if not self._url.startswith("sqlite"):
                kwargs.update(pool_size=5, max_overflow=5, pool_pre_ping=True, pool_recycle=3600)
            self._engine = create_async_engine(self._url, **kwargs)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._session_factory = async_sessionmaker(
                self._engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info("[STORE] Database initialized")
        except Exception as e:
            logger.error(f"[STORE] Failed to initialize database: {e}")
            raise

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("[STORE] Database closed")

    def _session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("TokenStore is not open")
        return self._session_factory()

    def _insert(self):
        assert self._engine is not None
        if self._engine.dialect.name == "postgresql":
            return pg_insert(TrackedToken)
        return sqlite_insert(TrackedToken)

    # ─── Writes ──────────────────────────────────────────────────────

    async def add_token(
        self,
        address: str,
        price: Decimal,
        *,
        name: str | None = None,
        total_supply: Decimal | None = None,
        market_cap: Decimal | None = None,
        source: str | None = None,
    ) -> bool:
        """Insert a new active token. Returns False if the address already exists."""
        now = utcnow()
        stmt = (
            self._insert()
            .values(
                address=address,
                discovered_at=now,
                price=price,
                current_price=price,
                last_checked_at=now,
                status=TokenStatus.ACTIVE.value,
                source=source,
                name=_sanitize(name) or "Unknown",
                total_supply=total_supply if total_supply is not None else Decimal("0"),
                market_cap=market_cap,
            )
            .on_conflict_do_nothing(index_elements=["address"])
        )
        try:
            async with self._write_lock, self._session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error(f"[STORE] Failed to add token {address}: {e}")
            raise
        return result.rowcount == 1

    async def update_price(self, address: str, price: Decimal) -> None:
        stmt = (
            update(TrackedToken)
            .where(TrackedToken.address == address)
            .values(current_price=price, last_checked_at=utcnow())
        )
        try:
            async with self._write_lock, self._session() as session:
                await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error(f"[STORE] Failed to update price for {address}: {e}")
            raise

    async def mark_bought(self, address: str) -> bool:
        """Record that a buy went through. Only the first call has effect."""
        stmt = (
            update(TrackedToken)
            .where(TrackedToken.address == address, TrackedToken.bought_at.is_(None))
            .values(bought_at=utcnow())
        )
        try:
            async with self._write_lock, self._session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error(f"[STORE] Failed to mark {address} bought: {e}")
            raise
        return result.rowcount == 1

    async def mark_inactive(self, address: str) -> bool:
        """Transition active -> inactive. Returns False if already inactive or unknown."""
        stmt = (
            update(TrackedToken)
            .where(
                TrackedToken.address == address,
                TrackedToken.status == TokenStatus.ACTIVE.value,
            )
            .values(status=TokenStatus.INACTIVE.value, last_checked_at=utcnow())
        )
        try:
            async with self._write_lock, self._session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error(f"[STORE] Failed to update status for {address}: {e}")
            raise
        return result.rowcount == 1

    async def cleanup_old_tokens(self, max_age_hours: float) -> int:
        """Delete inactive tokens not checked within max_age_hours."""
        cutoff = utcnow() - timedelta(hours=max_age_hours)
        stmt = delete(TrackedToken).where(
            TrackedToken.last_checked_at < cutoff,
            TrackedToken.status == TokenStatus.INACTIVE.value,
        )
        try:
            async with self._write_lock, self._session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error(f"[STORE] Failed to cleanup old tokens: {e}")
            raise
        return result.rowcount or 0

    # ─── Reads ───────────────────────────────────────────────────────

    async def get_token(self, address: str) -> TrackedToken | None:
        async with self._session() as session:
            return await session.get(TrackedToken, address)

    async def get_active_tokens(self) -> list[TrackedToken]:
        async with self._session() as session:
            result = await session.execute(
                select(TrackedToken).where(TrackedToken.status == TokenStatus.ACTIVE.value)
            )
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self._session() as session:
            result = await session.execute(select(func.count()).select_from(TrackedToken))
            return result.scalar_one()
