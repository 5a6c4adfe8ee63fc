"""
SQLAlchemy Models

Defines the database schema for:
- Resources (submitted documents and their embedding status)
- Chunks (overlapping text segments with pgvector embeddings)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    Boolean,
    Column,
    String,
    Integer,
    Text,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from pgvector.sqlalchemy import Vector

from ..config import settings
from ..core.enums import Category, EmbeddingStatus, ResourceType


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _status_column():
    return mapped_column(
        Enum(
            EmbeddingStatus,
            name="embedding_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=EmbeddingStatus.PENDING,
        server_default=EmbeddingStatus.PENDING.value,
    )


# ---------------------------------------------------------------------
# Resource Model
# ---------------------------------------------------------------------

class Resource(Base):
    """
    A submitted document (video transcript, PDF, article).

    Only a bounded preview of the body is stored; the full text lives on
    in the resource's chunks.
    """
    __tablename__ = "resource"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    type: Mapped[ResourceType] = mapped_column(
        Enum(ResourceType, name="resource_type", values_callable=_enum_values),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Category] = mapped_column(
        Enum(Category, name="resource_category", values_callable=_enum_values),
        nullable=False,
        default=Category.GENERAL,
        server_default=Category.GENERAL.value,
    )
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )
    embedding_status: Mapped[EmbeddingStatus] = _status_column()

    # Legacy resource-level vector, read only by the retrieval fallback
    embedding = Column(Vector(settings.embedding_dimensions), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    chunks: Mapped[List["Chunk"]] = relationship(
        "Chunk",
        back_populates="resource",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chunk.chunk_index",
    )


# ---------------------------------------------------------------------
# Chunk Model
# ---------------------------------------------------------------------

class Chunk(Base):
    """
    One overlapping text segment of a resource.

    The embedding is only present once embedding_status is COMPLETED.
    """
    __tablename__ = "chunk"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    resource_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("resource.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    embedding_status: Mapped[EmbeddingStatus] = _status_column()

    embedding = Column(Vector(settings.embedding_dimensions), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    resource: Mapped["Resource"] = relationship("Resource", back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("resource_id", "chunk_index", name="uq_chunk_resource_index"),
        Index("idx_chunk_resource", "resource_id"),
        Index("idx_chunk_status", "resource_id", "embedding_status"),
    )
