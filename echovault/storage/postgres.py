"""PostgreSQL entry store (SQLAlchemy async + pgvector)."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from echovault.db import Database
from echovault.errors import PersistenceError
from echovault.models.entry import EntryRecord
from echovault.storage.base import EntryStore
from echovault.types import Entry
from echovault.utils.sanitize import sanitize_entry

logger = logging.getLogger(__name__)

_COLUMNS = frozenset(EntryRecord.__table__.columns.keys()) - {"id", "updated_at"}


def _record_to_dict(rec: EntryRecord) -> dict[str, Any]:
    data = {name: getattr(rec, name) for name in _COLUMNS}
    if rec.embedding is not None:
        data["embedding"] = [float(v) for v in rec.embedding]
    return data


class PostgresEntryStore(EntryStore):
    """Entry store backed by the ``entries`` table."""

    def __init__(self, db: Database):
        self._db = db

    async def init(self) -> None:
        await self._db.init()

    async def close(self) -> None:
        await self._db.close()

    def _columns_only(self, fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - _COLUMNS
        if unknown:
            logger.debug(f"Ignoring non-column fields: {sorted(unknown)}")
        return {k: v for k, v in fields.items() if k in _COLUMNS}

    async def create(self, fields: dict[str, Any]) -> str:
        values = self._columns_only(fields)
        if values.get("created_at") is None:
            values.pop("created_at", None)
        try:
            async with self._db.session() as session:
                rec = EntryRecord(**values)
                session.add(rec)
                await session.flush()
                entry_id = str(rec.id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create entry: {e}") from e
        logger.debug(f"Created entry {entry_id}")
        return entry_id

    async def update(self, entry_id: str, fields: dict[str, Any]) -> None:
        values = self._columns_only(fields)
        if not values:
            return
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    update(EntryRecord)
                    .where(EntryRecord.id == uuid.UUID(entry_id))
                    .values(**values)
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update entry {entry_id}: {e}") from e
        if result.rowcount == 0:
            raise PersistenceError(f"Entry {entry_id} not found")

    async def list_entries(self, limit: Optional[int] = None) -> list[Entry]:
        stmt = select(EntryRecord).order_by(EntryRecord.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [sanitize_entry(str(rec.id), _record_to_dict(rec)) for rec in records]
