from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import VectorStore, get_async_session
from ..embeddings.embedder import Embedder
from ..embeddings.orchestrator import IngestionConfig, IngestionOrchestrator
from ..embeddings.queue import IngestionQueue
from ..retrieval.aggregator import RetrievalAggregator


@lru_cache
def get_embedder() -> Embedder:
    return Embedder()


@lru_cache
def get_orchestrator() -> IngestionOrchestrator:
    return IngestionOrchestrator(get_embedder(), IngestionConfig.from_settings())


@lru_cache
def get_aggregator() -> RetrievalAggregator:
    return RetrievalAggregator(get_embedder())


async def get_vector_store(
    session: AsyncSession = Depends(get_async_session),
) -> VectorStore:
    return VectorStore(session)


def get_ingestion_queue(request: Request) -> IngestionQueue:
    # Created and started by the application lifespan
    return request.app.state.ingestion_queue
