"""
Ingestion and Retrieval Data Models

This module defines the canonical records passed between the vector store
gateway, the ingestion orchestrator, the retrieval aggregator and the API:

- ChunkMatch: one nearest-neighbour chunk row joined with its resource
- ResourceMatch: one ranked resource returned to search callers
- IngestionReport / IngestionProgress / IngestionEstimate: ingestion outcomes
"""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from ..core.enums import Category, EmbeddingStatus, ResourceType


class ChunkMatch(BaseModel):
    """
    A single chunk returned by the nearest-neighbour query.

    Similarity is ``1 - cosine_distance``; higher is more similar.
    """

    chunk_id: uuid.UUID
    resource_id: uuid.UUID
    chunk_index: int = Field(..., ge=0)
    content: str
    type: ResourceType
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    category: Category
    similarity: float

    model_config = ConfigDict(extra="forbid", frozen=True)


class ResourceMatch(BaseModel):
    """
    A resource ranked by its best-matching chunks.

    ``content`` is the representative text: up to three matched chunks
    joined with a visible separator, or the stored preview on the legacy
    resource-level path.
    """

    id: uuid.UUID
    type: ResourceType
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    category: Category
    similarity: float
    content: Optional[str] = None
    chunks: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class IngestionReport(BaseModel):
    """Outcome of one ingestion run for a resource."""

    resource_id: uuid.UUID
    status: EmbeddingStatus = EmbeddingStatus.PROCESSING
    total: int = 0
    completed: int = 0
    errors: int = 0
    # chunks whose error status could not be written; left in processing
    stuck: int = 0
    cancelled: bool = False

    model_config = ConfigDict(extra="forbid")


class IngestionProgress(BaseModel):
    """Point-in-time ingestion progress for a resource."""

    resource_id: uuid.UUID
    title: str
    status: EmbeddingStatus
    chunks: Dict[str, int]
    progress: int = Field(..., ge=0, le=100)
    estimated_seconds_remaining: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid")


class IngestionEstimate(BaseModel):
    """Chunk count and processing time predicted at submission."""

    chunks: int = Field(..., ge=0)
    seconds: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)
