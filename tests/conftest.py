"""Shared fixtures: an in-memory VectorStore stand-in and embedder mocks."""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional, Set
from unittest.mock import AsyncMock

import pytest

from resource_rag.core.enums import Category, EmbeddingStatus, ResourceType
from resource_rag.core.errors import StorageError
from resource_rag.db.models import Chunk, Resource
from resource_rag.embeddings.embedder import Embedder
from resource_rag.embeddings.models import ChunkMatch, ResourceMatch
from resource_rag.embeddings.orchestrator import IngestionConfig


class InMemoryVectorStore:
    """
    Dict-backed replacement for VectorStore with failure injection.

    Mirrors the async gateway interface used by the orchestrator, the
    aggregator and the routes.
    """

    def __init__(self) -> None:
        self.resources: Dict[uuid.UUID, Resource] = {}
        self.chunks: Dict[uuid.UUID, Chunk] = {}
        self.chunk_matches: List[ChunkMatch] = []
        self.resource_matches: List[ResourceMatch] = []
        self.search_limits: List[int] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_create_for: Set[int] = set()
        self.fail_complete_for: Set[int] = set()
        self.fail_delete_chunks = False
        # chunk_index -> number of fail_chunk calls that still raise
        self.fail_mark_failures: Dict[int, int] = {}

    # Helpers -----------------------------------------------------------

    def add_resource(self, **fields) -> Resource:
        values = {
            "id": uuid.uuid4(),
            "type": ResourceType.ARTICLE,
            "title": "Resource",
            "description": None,
            "url": None,
            "content": None,
            "category": Category.GENERAL,
            "active": True,
            "embedding_status": EmbeddingStatus.PENDING,
        }
        values.update(fields)
        resource = Resource(**values)
        self.resources[resource.id] = resource
        return resource

    def add_chunk(
        self,
        resource_id: uuid.UUID,
        chunk_index: int,
        status: EmbeddingStatus = EmbeddingStatus.PENDING,
        content: str = "old chunk",
    ) -> Chunk:
        chunk = Chunk(
            id=uuid.uuid4(),
            resource_id=resource_id,
            chunk_index=chunk_index,
            content=content,
            tokens=len(content) // 4,
            embedding_status=status,
        )
        self.chunks[chunk.id] = chunk
        return chunk

    def chunks_for(self, resource_id: uuid.UUID) -> List[Chunk]:
        return sorted(
            (c for c in self.chunks.values() if c.resource_id == resource_id),
            key=lambda c: c.chunk_index,
        )

    # Gateway interface -------------------------------------------------

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def create_resource(self, **fields) -> Resource:
        return self.add_resource(**fields)

    async def get_resource(self, resource_id: uuid.UUID) -> Optional[Resource]:
        return self.resources.get(resource_id)

    async def list_resources(self, type=None, category=None, limit=50, offset=0):
        rows = [
            r for r in self.resources.values()
            if (type is None or r.type == type)
            and (category is None or r.category == category)
        ]
        return [(r, len(self.chunks_for(r.id))) for r in rows[offset : offset + limit]]

    async def count_resources(self, type=None, category=None) -> int:
        return len(await self.list_resources(type, category, limit=10**6))

    async def update_resource(self, resource_id: uuid.UUID, **fields):
        resource = self.resources.get(resource_id)
        if resource is None:
            return None
        for name, value in fields.items():
            setattr(resource, name, value)
        return resource

    async def set_resource_status(self, resource_id: uuid.UUID, status: EmbeddingStatus) -> None:
        resource = self.resources.get(resource_id)
        if resource is not None:
            resource.embedding_status = status

    async def delete_resource(self, resource_id: uuid.UUID) -> int:
        await self.delete_chunks(resource_id)
        return 1 if self.resources.pop(resource_id, None) is not None else 0

    async def delete_chunks(self, resource_id: uuid.UUID) -> int:
        if self.fail_delete_chunks:
            raise RuntimeError("connection reset")
        doomed = [c.id for c in self.chunks_for(resource_id)]
        for chunk_id in doomed:
            del self.chunks[chunk_id]
        return len(doomed)

    async def create_chunk(self, resource_id, chunk_index, content, tokens, status=EmbeddingStatus.PENDING):
        if chunk_index in self.fail_create_for and status != EmbeddingStatus.ERROR:
            raise StorageError("create_chunk failed: IntegrityError")
        chunk = Chunk(
            id=uuid.uuid4(),
            resource_id=resource_id,
            chunk_index=chunk_index,
            content=content,
            tokens=tokens,
            embedding_status=status,
        )
        self.chunks[chunk.id] = chunk
        return chunk

    async def complete_chunk(self, chunk_id: uuid.UUID, embedding: List[float]) -> None:
        chunk = self.chunks[chunk_id]
        if chunk.chunk_index in self.fail_complete_for:
            raise StorageError("complete_chunk failed: OperationalError")
        chunk.embedding = embedding
        chunk.embedding_status = EmbeddingStatus.COMPLETED

    async def fail_chunk(self, chunk_id: uuid.UUID) -> None:
        chunk = self.chunks[chunk_id]
        remaining = self.fail_mark_failures.get(chunk.chunk_index, 0)
        if remaining:
            self.fail_mark_failures[chunk.chunk_index] = remaining - 1
            raise StorageError("fail_chunk failed: OperationalError")
        chunk.embedding_status = EmbeddingStatus.ERROR

    async def get_chunks(self, resource_id: uuid.UUID) -> List[Chunk]:
        return self.chunks_for(resource_id)

    async def chunk_status_counts(self, resource_id: uuid.UUID) -> Dict[EmbeddingStatus, int]:
        counts = {status: 0 for status in EmbeddingStatus}
        for chunk in self.chunks_for(resource_id):
            counts[chunk.embedding_status] += 1
        return counts

    async def search_chunks(self, query_embedding, limit: int) -> List[ChunkMatch]:
        self.search_limits.append(limit)
        return self.chunk_matches[:limit]

    async def search_resources(self, query_embedding, limit: int) -> List[ResourceMatch]:
        return self.resource_matches[:limit]


def make_chunk_match(
    resource_id: uuid.UUID,
    similarity: float,
    content: str,
    chunk_index: int = 0,
    title: str = "Resource",
    category: Category = Category.GENERAL,
) -> ChunkMatch:
    return ChunkMatch(
        chunk_id=uuid.uuid4(),
        resource_id=resource_id,
        chunk_index=chunk_index,
        content=content,
        type=ResourceType.ARTICLE,
        title=title,
        category=category,
        similarity=similarity,
    )


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def mock_embedder():
    mock = AsyncMock(spec=Embedder)
    mock.embed.return_value = [0.1] * 8
    mock.embed_batch.side_effect = lambda texts: [[0.2] * 8 for _ in texts]
    return mock


@pytest.fixture
def fast_config() -> IngestionConfig:
    """40-char chunks, no overlap, no pause."""
    return IngestionConfig(
        inter_segment_delay=0,
        max_tokens=10,
        overlap_tokens=0,
        chars_per_token=4,
    )
