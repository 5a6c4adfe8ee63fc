"""
API Models

This module defines the Pydantic models used for request/response
validation across the resource submission, progress and search endpoints.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Clear schema documentation
- Reject unknown fields
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, Field, ConfigDict

from ..core.enums import Category, EmbeddingStatus, ResourceType


class OperationResult(BaseModel):
    """
    Standardized mutation operation result.
    """
    status: Literal["updated", "deleted", "created", "ok"]
    count: Optional[int] = Field(default=None, ge=0)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Resource Submission Models
# ---------------------------------------------------------------------

class ResourceCreateRequest(BaseModel):
    """
    Submit a new resource for ingestion.

    ``content`` is the full body; only a preview of it is stored.
    """
    type: ResourceType
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    url: Optional[str] = Field(default=None, max_length=500)
    content: Optional[str] = None
    category: Category = Category.GENERAL

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ResourceUpdateRequest(BaseModel):
    """
    Partial resource update. A changed ``content`` triggers re-ingestion.
    """
    type: Optional[ResourceType] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    url: Optional[str] = Field(default=None, max_length=500)
    content: Optional[str] = None
    category: Optional[Category] = None
    active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ResourceSubmissionResponse(BaseModel):
    """
    Returned immediately after a submission, update or reprocess request.
    """
    id: uuid.UUID
    type: ResourceType
    title: str
    category: Category
    embedding_status: EmbeddingStatus
    estimated_chunks: int = Field(..., ge=0)
    estimated_time_seconds: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Resource Read Models
# ---------------------------------------------------------------------

class ChunkSummary(BaseModel):
    id: uuid.UUID
    chunk_index: int
    tokens: Optional[int] = None
    embedding_status: EmbeddingStatus

    model_config = ConfigDict(extra="forbid", from_attributes=True)


class ResourceSummary(BaseModel):
    id: uuid.UUID
    type: ResourceType
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    category: Category
    active: bool
    embedding_status: EmbeddingStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    chunk_count: Optional[int] = None

    model_config = ConfigDict(extra="forbid", from_attributes=True)


class ResourceDetail(ResourceSummary):
    chunks: List[ChunkSummary] = Field(default_factory=list)


class Pagination(BaseModel):
    total: int = Field(..., ge=0)
    limit: int
    offset: int

    model_config = ConfigDict(extra="forbid")


class ResourceListResponse(BaseModel):
    resources: List[ResourceSummary]
    pagination: Pagination

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Search Models
# ---------------------------------------------------------------------

class SearchRequest(BaseModel):
    """
    Semantic resource search request.
    """
    query: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    category: Optional[Category] = None

    model_config = ConfigDict(extra="forbid")
