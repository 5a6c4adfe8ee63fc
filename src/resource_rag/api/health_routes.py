from fastapi import APIRouter, Request
from ..config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    queue = getattr(request.app.state, "ingestion_queue", None)
    return {
        "status": "ok",
        "embedding_model": settings.embedding_model,
        "ingestion_workers": bool(queue and queue.running),
        "queued_jobs": queue.qsize() if queue else 0,
    }
