"""Async engine and session handling for the journal database."""

from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


class Database:
    """Owns the engine for one PostgreSQL (pgvector) database.

    ``pool_pre_ping`` is on because a journal client routinely sleeps or drops
    offline, which leaves pooled connections dead.
    """

    def __init__(self, url: str, pool_size: int = 5, echo: bool = False):
        self.engine = create_async_engine(
            url, pool_size=pool_size, pool_pre_ping=True, echo=echo
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @asynccontextmanager
    async def session(self):
        """One unit of work: commit when the block exits cleanly, else roll back."""
        async with self.session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    async def init(self, drop_existing: bool = False) -> None:
        """Ensure pgvector and the ``entries`` table exist.

        ``drop_existing`` wipes the table first (test databases only).
        """
        from echovault.models.base import Base
        import echovault.models.entry  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            if drop_existing:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()
