"""
Retrieval Aggregator

This module turns a free-text query into a ranked list of resources.

Responsibilities
----------------
- Embed the query
- Fetch the nearest completed chunks of active resources
- Group chunks by resource, scoring each resource by its best chunk
- Apply the category filter (``general`` is always relevant)
- Fall back to resource-level vectors when no chunk matches at all
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import logging

from ..core.enums import Category
from ..core.errors import InvalidInputError, ProviderError, QueryEmbeddingError
from ..db.vector_store import VectorStore
from ..embeddings.embedder import Embedder
from ..embeddings.models import ChunkMatch, ResourceMatch

logger = logging.getLogger("rag.retrieval")

CHUNKS_PER_RESOURCE = 3
CHUNK_SEPARATOR = "\n\n---\n\n"


# ---------------------------------------------------------------------
# Category Filtering
# ---------------------------------------------------------------------

def category_allows(requested: Optional[Category], category: Category) -> bool:
    """
    Return True if a resource in ``category`` survives a filter on ``requested``.
    """
    if requested is None or requested == Category.GENERAL:
        return True
    return category in (requested, Category.GENERAL)


# ---------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------

def aggregate_chunk_matches(
    matches: Iterable[ChunkMatch],
    limit: int,
    category: Optional[Category] = None,
    chunks_per_resource: int = CHUNKS_PER_RESOURCE,
    separator: str = CHUNK_SEPARATOR,
) -> List[ResourceMatch]:
    """
    Fold chunk matches into ranked resources.

    Parameters
    ----------
    matches : Iterable[ChunkMatch]
        Chunk rows, normally in ascending distance order.

    limit : int
        Maximum number of resources to return.

    category : Optional[Category]
        Optional category filter.

    chunks_per_resource : int
        Maximum chunk contents kept per resource, in encounter order.

    separator : str
        Visible separator joining a resource's chunk contents.

    Returns
    -------
    List[ResourceMatch]
        Resources sorted by their maximum chunk similarity, descending.
    """
    grouped: Dict[object, ResourceMatch] = {}

    for match in matches:
        resource = grouped.get(match.resource_id)
        if resource is None:
            grouped[match.resource_id] = ResourceMatch(
                id=match.resource_id,
                type=match.type,
                title=match.title,
                description=match.description,
                url=match.url,
                category=match.category,
                similarity=match.similarity,
                chunks=[match.content],
            )
            continue

        if len(resource.chunks) < chunks_per_resource:
            resource.chunks.append(match.content)
        if match.similarity > resource.similarity:
            resource.similarity = match.similarity

    results = [
        resource
        for resource in grouped.values()
        if category_allows(category, resource.category)
    ]
    for resource in results:
        resource.content = separator.join(resource.chunks)

    results.sort(key=lambda r: r.similarity, reverse=True)
    return results[:limit]


# ---------------------------------------------------------------------
# Main Search Entry Point
# ---------------------------------------------------------------------

class RetrievalAggregator:
    """
    Query-time search over chunk embeddings.
    """

    def __init__(
        self,
        embedder: Embedder,
        chunks_per_resource: int = CHUNKS_PER_RESOURCE,
        separator: str = CHUNK_SEPARATOR,
    ) -> None:
        self._embedder = embedder
        self.chunks_per_resource = chunks_per_resource
        self.separator = separator

    async def search(
        self,
        store: VectorStore,
        query: str,
        limit: int = 5,
        category: Optional[Category] = None,
    ) -> List[ResourceMatch]:
        """
        Return the top ``limit`` resources for a query.

        Raises
        ------
        QueryEmbeddingError
            If the query cannot be embedded.
        """
        try:
            query_embedding = await self._embedder.embed(query)
        except (InvalidInputError, ProviderError) as exc:
            raise QueryEmbeddingError("Query could not be embedded") from exc

        matches = await store.search_chunks(query_embedding, limit * 2)

        if matches:
            return aggregate_chunk_matches(
                matches,
                limit,
                category,
                chunks_per_resource=self.chunks_per_resource,
                separator=self.separator,
            )

        logger.info("No chunk matches; falling back to resource-level vectors")
        legacy = await store.search_resources(query_embedding, limit)
        return [r for r in legacy if category_allows(category, r.category)][:limit]
