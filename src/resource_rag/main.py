"""
Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures logging and global exception handling, and owns the lifetime of
the background ingestion workers.

Design Goals
------------
- Deterministic startup
- Explicit dependency initialization order
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from .config import settings
from .core.errors import (
    QueryEmbeddingError,
    ResourceNotFoundError,
    query_embedding_error_handler,
    resource_not_found_handler,
    unhandled_exception_handler,
)
from .db import AsyncSessionLocal, async_engine, init_db
from .embeddings.queue import IngestionQueue
from .api import (
    health_routes,
    resource_routes,
    search_routes,
)
from .api.dependencies import get_orchestrator


logger = logging.getLogger("rag.app")


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the schema, then run the ingestion worker pool for the
    lifetime of the application.
    """
    logger.info("Starting resource-rag")

    await init_db()

    queue = IngestionQueue(
        orchestrator=get_orchestrator(),
        session_factory=AsyncSessionLocal,
        concurrency=settings.max_concurrent_ingestions,
    )
    queue.start()
    app.state.ingestion_queue = queue

    try:
        yield
    finally:
        logger.info("Shutting down resource-rag")
        await queue.stop()
        await async_engine.dispose()


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory pattern allows:
    - Clean test instantiation
    - Controlled dependency overrides in pytest

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    configure_logging()

    app = FastAPI(
        title="resource-rag",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(ResourceNotFoundError, resource_not_found_handler)
    app.add_exception_handler(QueryEmbeddingError, query_embedding_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(resource_routes.router)
    app.include_router(search_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn)
# ---------------------------------------------------------------------

app = create_app()
