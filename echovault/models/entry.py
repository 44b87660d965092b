"""Journal entry model."""

from __future__ import annotations

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

import echovault.models as _models
from echovault.models.base import Base, TimestampMixin


class EntryRecord(Base, TimestampMixin):
    __tablename__ = "entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="personal")
    effective_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    embedding: Mapped[list | None] = mapped_column(
        Vector(_models._embedding_dims), nullable=True
    )
    analysis_status: Mapped[str] = mapped_column(
        String(20), default="pending", server_default="pending", nullable=False,
    )
    entry_type: Mapped[str] = mapped_column(
        String(20), default="reflection", server_default="reflection", nullable=False,
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tags: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    context_version: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False,
    )
    classification_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    safety_flagged: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False,
    )
    safety_user_response: Mapped[str | None] = mapped_column(String(20), nullable=True)
    has_warning_indicators: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False,
    )
    temporal_context: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    future_mentions: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    contextual_insight: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    continues_situation: Mapped[str | None] = mapped_column(Text, nullable=True)
    goal_update: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    extracted_tasks: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_entries_created", "created_at"),
        Index("ix_entries_version", "context_version"),
    )

    @classmethod
    def __declare_last__(cls):
        """Set vector dimension from runtime config after all models declared."""
        cls.__table__.c.embedding.type = Vector(_models._embedding_dims)
