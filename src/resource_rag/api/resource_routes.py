"""
Resource Routes

This module exposes endpoints for:
- Submitting, updating and deleting resources
- Listing and inspecting resources with their chunks
- Querying ingestion progress
- Re-running ingestion for a resource

Ingestion itself never runs inside a request: mutations enqueue a job on
the ingestion queue and return immediately with an estimate.
"""

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from .models import (
    ChunkSummary,
    OperationResult,
    Pagination,
    ResourceCreateRequest,
    ResourceDetail,
    ResourceListResponse,
    ResourceSubmissionResponse,
    ResourceSummary,
    ResourceUpdateRequest,
)
from .dependencies import get_ingestion_queue, get_orchestrator, get_vector_store
from ..core.enums import Category, EmbeddingStatus, ResourceType
from ..core.errors import ResourceNotFoundError
from ..db import Resource, VectorStore
from ..embeddings.models import IngestionEstimate, IngestionProgress
from ..embeddings.orchestrator import (
    IngestionJob,
    IngestionOrchestrator,
    assemble_text,
    content_preview,
)
from ..embeddings.queue import IngestionQueue

router = APIRouter(prefix="/resources", tags=["resources"])


# ---------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------

async def _require_resource(store: VectorStore, resource_id: uuid.UUID) -> Resource:
    resource = await store.get_resource(resource_id)
    if resource is None:
        raise ResourceNotFoundError(f"Resource {resource_id} not found")
    return resource


def _summary(resource: Resource, chunk_count: Optional[int] = None) -> ResourceSummary:
    return ResourceSummary(
        id=resource.id,
        type=resource.type,
        title=resource.title,
        description=resource.description,
        url=resource.url,
        content=resource.content,
        category=resource.category,
        active=resource.active,
        embedding_status=resource.embedding_status,
        created_at=resource.created_at,
        updated_at=resource.updated_at,
        chunk_count=chunk_count,
    )


def _submission(
    resource: Resource,
    estimate: IngestionEstimate,
) -> ResourceSubmissionResponse:
    return ResourceSubmissionResponse(
        id=resource.id,
        type=resource.type,
        title=resource.title,
        category=resource.category,
        embedding_status=resource.embedding_status,
        estimated_chunks=estimate.chunks,
        estimated_time_seconds=estimate.seconds,
    )


async def _enqueue(
    queue: IngestionQueue,
    resource_id: uuid.UUID,
    title: Optional[str],
    description: Optional[str],
    content: Optional[str],
) -> None:
    await queue.enqueue(
        IngestionJob(
            resource_id=resource_id,
            title=title,
            description=description,
            content=content,
            request_id=uuid.uuid4().hex,
        )
    )


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------

@router.post(
    "",
    response_model=ResourceSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a resource for ingestion",
)
async def create_resource(
    req: ResourceCreateRequest,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
    queue: Annotated[IngestionQueue, Depends(get_ingestion_queue)],
) -> ResourceSubmissionResponse:
    """
    Create a resource in ``pending`` status and queue its ingestion.

    Workflow
    --------
    1. Estimate chunk count and processing time from the full text.
    2. Persist the resource with a bounded content preview.
    3. Enqueue ingestion with the full text; it is not stored.
    """
    estimate = orchestrator.estimate(
        assemble_text((req.title, req.description, req.content))
    )

    resource = await store.create_resource(
        type=req.type,
        title=req.title,
        description=req.description,
        url=req.url,
        content=content_preview(req.content),
        category=req.category,
    )
    # Workers use their own sessions, so the row must be visible first
    await store.commit()

    await _enqueue(queue, resource.id, req.title, req.description, req.content)

    return _submission(resource, estimate)


@router.get(
    "",
    response_model=ResourceListResponse,
    summary="List resources",
)
async def list_resources(
    store: Annotated[VectorStore, Depends(get_vector_store)],
    type: Optional[ResourceType] = None,
    category: Optional[Category] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> ResourceListResponse:
    rows = await store.list_resources(type=type, category=category, limit=limit, offset=offset)
    total = await store.count_resources(type=type, category=category)

    return ResourceListResponse(
        resources=[_summary(resource, count) for resource, count in rows],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@router.get(
    "/{resource_id}",
    response_model=ResourceDetail,
    summary="Get a resource with its chunks",
)
async def get_resource(
    resource_id: uuid.UUID,
    store: Annotated[VectorStore, Depends(get_vector_store)],
) -> ResourceDetail:
    resource = await _require_resource(store, resource_id)
    chunks = await store.get_chunks(resource_id)

    return ResourceDetail(
        **_summary(resource, len(chunks)).model_dump(),
        chunks=[ChunkSummary.model_validate(chunk) for chunk in chunks],
    )


@router.put(
    "/{resource_id}",
    response_model=ResourceSubmissionResponse,
    summary="Update a resource",
)
async def update_resource(
    resource_id: uuid.UUID,
    req: ResourceUpdateRequest,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
    queue: Annotated[IngestionQueue, Depends(get_ingestion_queue)],
) -> ResourceSubmissionResponse:
    """
    Apply a partial update.

    When the body content changes, the preview is replaced, the status is
    reset to ``pending`` and the resource is re-ingested from the new text.
    """
    resource = await _require_resource(store, resource_id)

    updates = req.model_dump(exclude_unset=True, exclude={"content"})
    # Only the preview is stored, so any long body differs from it and
    # an edit past the preview boundary still counts as a change.
    content_changed = "content" in req.model_fields_set and req.content != resource.content

    estimate = IngestionEstimate(chunks=0, seconds=0)
    title = updates.get("title") or resource.title
    description = updates.get("description") or resource.description

    if content_changed:
        updates["content"] = content_preview(req.content)
        updates["embedding_status"] = EmbeddingStatus.PENDING
        estimate = orchestrator.estimate(assemble_text((title, description, req.content)))

    resource = await store.update_resource(resource_id, **updates)
    await store.commit()

    if content_changed:
        await _enqueue(queue, resource_id, title, description, req.content)

    return _submission(resource, estimate)


@router.delete(
    "/{resource_id}",
    response_model=OperationResult,
    summary="Delete a resource and its chunks",
)
async def delete_resource(
    resource_id: uuid.UUID,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
    queue: Annotated[IngestionQueue, Depends(get_ingestion_queue)],
) -> OperationResult:
    await _require_resource(store, resource_id)

    queue.cancel(resource_id)
    count = await orchestrator.delete_resource(store, resource_id)

    return OperationResult(status="deleted", count=count)


@router.get(
    "/{resource_id}/status",
    response_model=IngestionProgress,
    summary="Get ingestion progress",
)
async def get_resource_status(
    resource_id: uuid.UUID,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
) -> IngestionProgress:
    return await orchestrator.get_progress(store, resource_id)


@router.post(
    "/{resource_id}/reprocess",
    response_model=ResourceSubmissionResponse,
    summary="Re-run ingestion for a resource",
)
async def reprocess_resource(
    resource_id: uuid.UUID,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
    queue: Annotated[IngestionQueue, Depends(get_ingestion_queue)],
) -> ResourceSubmissionResponse:
    """
    Reset a resource to ``pending`` and re-ingest it.

    Only the stored preview of the body is available, so the new chunk set
    is built from title, description and preview.
    """
    resource = await _require_resource(store, resource_id)

    await store.set_resource_status(resource_id, EmbeddingStatus.PENDING)
    await store.delete_chunks(resource_id)
    await store.commit()
    resource.embedding_status = EmbeddingStatus.PENDING

    estimate = orchestrator.estimate(
        assemble_text((resource.title, resource.description, resource.content))
    )
    await _enqueue(queue, resource_id, resource.title, resource.description, resource.content)

    return _submission(resource, estimate)
