"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy shared by the ingestion and
retrieval layers, plus the application-wide FastAPI exception handlers.

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
- Keep per-chunk failures local; surface request-level failures clearly
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class ResourceRAGError(RuntimeError):
    """Base error for the ingestion and retrieval core."""


class InvalidInputError(ResourceRAGError, ValueError):
    """Raised when empty or malformed text is offered for embedding."""


class ProviderError(ResourceRAGError):
    """
    Raised when the embedding provider fails.

    Covers transport errors, timeouts, rate limiting and malformed
    responses. The underlying exception is chained as ``__cause__``.
    """


class AssemblyError(ResourceRAGError):
    """Raised when a resource has no usable text to segment."""


class StorageError(ResourceRAGError):
    """Raised when a persistence operation fails."""


class QueryEmbeddingError(ResourceRAGError):
    """Raised when query text cannot be embedded at retrieval time."""


class ResourceNotFoundError(ResourceRAGError, LookupError):
    """Raised when a resource id does not exist."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def resource_not_found_handler(
    request: Request,
    exc: ResourceNotFoundError,
) -> JSONResponse:
    """
    Map unknown resource ids to a 404 response.
    """
    return JSONResponse(
        status_code=404,
        content={"error": "resource_not_found", "detail": str(exc)},
    )


async def query_embedding_error_handler(
    request: Request,
    exc: QueryEmbeddingError,
) -> JSONResponse:
    """
    Surface query embedding failures as a 502.

    The embedding provider is an upstream dependency, so the failure is
    reported as a bad gateway rather than an internal error. The provider's
    own error text is logged but not returned.
    """
    logger.warning(
        "Query embedding failed during request %s %s: %s",
        request.method,
        request.url.path,
        exc.__cause__ or exc,
    )

    return JSONResponse(
        status_code=502,
        content={
            "error": "query_embedding_failed",
            "detail": "The search query could not be embedded",
        },
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Last-resort handler: log the traceback, return a generic 500.

    Storage and provider failures that escape a route end up here; their
    messages are never echoed to the client.
    """

    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
