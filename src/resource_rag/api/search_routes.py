"""
Search Routes

This module defines the semantic resource search endpoint backed by chunk
embeddings. It is typically invoked by the chat layer to gather context
before generating a response.
"""

from fastapi import APIRouter, Depends, status
from typing import List, Annotated

from .models import SearchRequest
from .dependencies import get_aggregator, get_vector_store
from ..db import VectorStore
from ..embeddings.models import ResourceMatch
from ..retrieval.aggregator import RetrievalAggregator

router = APIRouter(prefix="/search", tags=["search"])


@router.post(
    "",
    response_model=List[ResourceMatch],
    summary="Vector-based semantic resource search",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    aggregator: Annotated[RetrievalAggregator, Depends(get_aggregator)],
) -> List[ResourceMatch]:
    """
    Return the resources most relevant to a query.

    Parameters
    ----------
    req : SearchRequest
        Contains:
        - query: Search query string
        - limit: Number of resources to return
        - category: Optional category filter

    Returns
    -------
    List[ResourceMatch]
        Resources ranked by their best-matching chunk.
    """
    # QueryEmbeddingError is mapped to a 502 by the registered handler
    return await aggregator.search(
        store,
        query=req.query,
        limit=req.limit,
        category=req.category,
    )
