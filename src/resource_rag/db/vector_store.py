"""
Vector Store

PostgreSQL + pgvector gateway for resources, chunks and similarity search.

The gateway owns the on-the-wire representation of vectors: callers pass
plain float lists and pgvector's SQLAlchemy type binds them as parameters.
Every SQLAlchemy failure is rolled back and re-raised as StorageError so the
session stays usable for the caller's recovery writes.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import select, delete, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Chunk, Resource
from ..core.enums import Category, EmbeddingStatus, ResourceType
from ..core.errors import StorageError
from ..embeddings.models import ChunkMatch, ResourceMatch


class VectorStore:
    """
    PostgreSQL-backed store for resources and chunk embeddings.

    All writes are single-row creates/updates or per-resource deletes;
    no transaction spans more than one chunk's embedding write.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize with an async database session.

        Parameters
        ----------
        session : AsyncSession
            SQLAlchemy async session for database operations.
        """
        self._session = session

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise StorageError(
                f"{operation} failed: {type(exc).__name__}"
            ) from exc

    async def commit(self) -> None:
        """
        Commit the current transaction.
        """
        async with self._guard("commit"):
            await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def create_resource(
        self,
        type: ResourceType,
        title: str,
        description: Optional[str] = None,
        url: Optional[str] = None,
        content: Optional[str] = None,
        category: Category = Category.GENERAL,
        active: bool = True,
    ) -> Resource:
        """
        Insert a resource in ``pending`` status.

        ``content`` is the bounded preview, never the full body.
        """
        resource = Resource(
            id=uuid.uuid4(),
            type=type,
            title=title,
            description=description,
            url=url,
            content=content,
            category=category,
            active=active,
            embedding_status=EmbeddingStatus.PENDING,
        )
        async with self._guard("create_resource"):
            self._session.add(resource)
            await self._session.flush()
        return resource

    async def get_resource(self, resource_id: uuid.UUID) -> Optional[Resource]:
        async with self._guard("get_resource"):
            return await self._session.get(Resource, resource_id)

    async def list_resources(
        self,
        type: Optional[ResourceType] = None,
        category: Optional[Category] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Tuple[Resource, int]]:
        """
        Return (resource, chunk_count) pairs, newest first.
        """
        chunk_count = (
            select(func.count(Chunk.id))
            .where(Chunk.resource_id == Resource.id)
            .correlate(Resource)
            .scalar_subquery()
            .label("chunk_count")
        )
        stmt = (
            select(Resource, chunk_count)
            .order_by(Resource.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        if type is not None:
            stmt = stmt.where(Resource.type == type)
        if category is not None:
            stmt = stmt.where(Resource.category == category)

        async with self._guard("list_resources"):
            result = await self._session.execute(stmt)
            return [(row[0], int(row[1] or 0)) for row in result.all()]

    async def count_resources(
        self,
        type: Optional[ResourceType] = None,
        category: Optional[Category] = None,
    ) -> int:
        stmt = select(func.count()).select_from(Resource)
        if type is not None:
            stmt = stmt.where(Resource.type == type)
        if category is not None:
            stmt = stmt.where(Resource.category == category)

        async with self._guard("count_resources"):
            result = await self._session.execute(stmt)
            return result.scalar() or 0

    async def update_resource(
        self,
        resource_id: uuid.UUID,
        **fields,
    ) -> Optional[Resource]:
        """
        Apply a partial update and return the refreshed resource.
        """
        async with self._guard("update_resource"):
            resource = await self._session.get(Resource, resource_id)
            if resource is None:
                return None
            for name, value in fields.items():
                setattr(resource, name, value)
            await self._session.flush()
            return resource

    async def set_resource_status(
        self,
        resource_id: uuid.UUID,
        status: EmbeddingStatus,
    ) -> None:
        stmt = (
            update(Resource)
            .where(Resource.id == resource_id)
            .values(embedding_status=status)
        )
        async with self._guard("set_resource_status"):
            await self._session.execute(stmt)

    async def delete_resource(self, resource_id: uuid.UUID) -> int:
        """
        Delete a resource and all of its chunks.

        Chunks are removed explicitly first so the invariant holds even
        when the database lacks the ON DELETE CASCADE constraint.

        Returns the number of deleted resource rows (0 or 1).
        """
        await self.delete_chunks(resource_id)
        stmt = delete(Resource).where(Resource.id == resource_id)
        async with self._guard("delete_resource"):
            result = await self._session.execute(stmt)
            return result.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def delete_chunks(self, resource_id: uuid.UUID) -> int:
        """
        Remove all chunks for a given resource.

        Returns the number of deleted rows.
        """
        stmt = delete(Chunk).where(Chunk.resource_id == resource_id)
        async with self._guard("delete_chunks"):
            result = await self._session.execute(stmt)
            return result.rowcount

    async def create_chunk(
        self,
        resource_id: uuid.UUID,
        chunk_index: int,
        content: str,
        tokens: Optional[int],
        status: EmbeddingStatus = EmbeddingStatus.PENDING,
    ) -> Chunk:
        chunk = Chunk(
            id=uuid.uuid4(),
            resource_id=resource_id,
            chunk_index=chunk_index,
            content=content,
            tokens=tokens,
            embedding_status=status,
        )
        async with self._guard("create_chunk"):
            self._session.add(chunk)
            await self._session.flush()
        return chunk

    async def complete_chunk(
        self,
        chunk_id: uuid.UUID,
        embedding: List[float],
    ) -> None:
        """
        Persist a chunk's vector and mark it ``completed``.
        """
        stmt = (
            update(Chunk)
            .where(Chunk.id == chunk_id)
            .values(embedding=embedding, embedding_status=EmbeddingStatus.COMPLETED)
        )
        async with self._guard("complete_chunk"):
            await self._session.execute(stmt)

    async def fail_chunk(self, chunk_id: uuid.UUID) -> None:
        stmt = (
            update(Chunk)
            .where(Chunk.id == chunk_id)
            .values(embedding_status=EmbeddingStatus.ERROR)
        )
        async with self._guard("fail_chunk"):
            await self._session.execute(stmt)

    async def get_chunks(self, resource_id: uuid.UUID) -> List[Chunk]:
        stmt = (
            select(Chunk)
            .where(Chunk.resource_id == resource_id)
            .order_by(Chunk.chunk_index)
        )
        async with self._guard("get_chunks"):
            result = await self._session.execute(stmt)
            return list(result.scalars().all())

    async def chunk_status_counts(
        self,
        resource_id: uuid.UUID,
    ) -> Dict[EmbeddingStatus, int]:
        """
        Return chunk counts per embedding status for a resource.

        Statuses with no chunks are reported as zero.
        """
        stmt = (
            select(Chunk.embedding_status, func.count(Chunk.id))
            .where(Chunk.resource_id == resource_id)
            .group_by(Chunk.embedding_status)
        )
        async with self._guard("chunk_status_counts"):
            result = await self._session.execute(stmt)
            rows = result.all()

        counts = {status: 0 for status in EmbeddingStatus}
        for status, count in rows:
            counts[EmbeddingStatus(status)] = int(count)
        return counts

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    async def search_chunks(
        self,
        query_embedding: List[float],
        limit: int,
    ) -> List[ChunkMatch]:
        """
        Return the nearest completed chunks of active resources.

        Parameters
        ----------
        query_embedding : List[float]
            Query vector.
        limit : int
            Maximum number of chunk rows to return.

        Returns
        -------
        List[ChunkMatch]
            Rows ordered by ascending cosine distance.
        """
        cosine_distance = Chunk.embedding.cosine_distance(query_embedding)

        stmt = (
            select(
                Chunk.id,
                Chunk.resource_id,
                Chunk.chunk_index,
                Chunk.content,
                Resource.type,
                Resource.title,
                Resource.description,
                Resource.url,
                Resource.category,
                (1 - cosine_distance).label("similarity"),
            )
            .join(Resource, Resource.id == Chunk.resource_id)
            .where(
                Chunk.embedding.is_not(None),
                Chunk.embedding_status == EmbeddingStatus.COMPLETED,
                Resource.active.is_(True),
            )
            .order_by(cosine_distance)
            .limit(limit)
        )

        async with self._guard("search_chunks"):
            result = await self._session.execute(stmt)
            rows = result.all()

        return [
            ChunkMatch(
                chunk_id=row.id,
                resource_id=row.resource_id,
                chunk_index=row.chunk_index,
                content=row.content,
                type=row.type,
                title=row.title,
                description=row.description,
                url=row.url,
                category=row.category,
                similarity=float(row.similarity),
            )
            for row in rows
        ]

    async def search_resources(
        self,
        query_embedding: List[float],
        limit: int,
    ) -> List[ResourceMatch]:
        """
        Legacy path: rank active resources by their resource-level vector.
        """
        cosine_distance = Resource.embedding.cosine_distance(query_embedding)

        stmt = (
            select(
                Resource.id,
                Resource.type,
                Resource.title,
                Resource.description,
                Resource.url,
                Resource.content,
                Resource.category,
                (1 - cosine_distance).label("similarity"),
            )
            .where(
                Resource.embedding.is_not(None),
                Resource.active.is_(True),
            )
            .order_by(cosine_distance)
            .limit(limit)
        )

        async with self._guard("search_resources"):
            result = await self._session.execute(stmt)
            rows = result.all()

        return [
            ResourceMatch(
                id=row.id,
                type=row.type,
                title=row.title,
                description=row.description,
                url=row.url,
                category=row.category,
                similarity=float(row.similarity),
                content=row.content,
            )
            for row in rows
        ]
