"""ORM mapping of the single table backing SqlDocumentStore."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    """One stored document. ``path`` is the slash-joined document path."""

    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_data", "data", postgresql_using="gin", postgresql_ops={"data": "jsonb_path_ops"}),
        Index("ix_documents_group_timestamp", "collection_id", text("(data -> 'timestamp' ->> '$ts')")),
    )

    path: Mapped[str] = mapped_column(String(1024), primary_key=True)
    collection_path: Mapped[str] = mapped_column(String(1024), nullable=False, index=True)
    collection_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
