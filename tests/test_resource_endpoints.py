import contextlib
import uuid
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from resource_rag.main import app
from resource_rag.api.dependencies import (
    get_aggregator,
    get_ingestion_queue,
    get_orchestrator,
    get_vector_store,
)
from resource_rag.core.enums import Category, EmbeddingStatus, ResourceType
from resource_rag.core.errors import ProviderError
from resource_rag.embeddings.orchestrator import IngestionConfig, IngestionOrchestrator
from resource_rag.embeddings.queue import IngestionQueue
from resource_rag.retrieval.aggregator import RetrievalAggregator

from conftest import make_chunk_match


@pytest.fixture
def mock_queue():
    return MagicMock(spec=IngestionQueue)


@pytest.fixture
def client(store, mock_embedder, mock_queue):
    orchestrator = IngestionOrchestrator(mock_embedder, IngestionConfig(inter_segment_delay=0))

    app.dependency_overrides[get_vector_store] = lambda: store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_aggregator] = lambda: RetrievalAggregator(mock_embedder)
    app.dependency_overrides[get_ingestion_queue] = lambda: mock_queue

    # Mock lifespan to avoid DB connection and background workers
    @contextlib.asynccontextmanager
    async def mock_lifespan(app):
        yield

    app.router.lifespan_context = mock_lifespan

    with TestClient(app) as c:
        yield c

    app.dependency_overrides = {}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    # lifespan is mocked, so no worker pool is attached
    assert data["ingestion_workers"] is False
    assert data["queued_jobs"] == 0


class TestCreate:

    def test_create_queues_full_text(self, client, store, mock_queue):
        body = "x" * 600
        response = client.post(
            "/resources",
            json={
                "type": "article",
                "title": "Closing deals",
                "content": body,
                "category": "commercial",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["embedding_status"] == "pending"
        assert data["category"] == "commercial"
        assert data["estimated_chunks"] == 1
        # 1 chunk * (0s delay + 0.5s overhead), rounded up
        assert data["estimated_time_seconds"] == 1

        resource = store.resources[uuid.UUID(data["id"])]
        assert resource.content == "x" * 500 + "..."

        mock_queue.enqueue.assert_awaited_once()
        job = mock_queue.enqueue.await_args.args[0]
        assert job.resource_id == resource.id
        assert job.content == body

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "podcast", "title": "T"},
            {"type": "video", "title": ""},
            {"type": "video", "title": "T", "category": "unknown"},
            {"type": "video", "title": "T", "owner": "someone"},
        ],
    )
    def test_rejects_invalid_payload(self, client, mock_queue, payload):
        response = client.post("/resources", json=payload)
        assert response.status_code == 422
        mock_queue.enqueue.assert_not_awaited()


class TestRead:

    def test_list_filters_and_counts_chunks(self, client, store):
        sales = store.add_resource(title="Sales", category=Category.COMMERCIAL)
        store.add_resource(title="Pitch", category=Category.COMMERCIAL, type=ResourceType.VIDEO)
        store.add_resource(title="Ads", category=Category.META_ADS)
        store.add_chunk(sales.id, 0)
        store.add_chunk(sales.id, 1)

        response = client.get("/resources", params={"category": "commercial"})

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"] == {"total": 2, "limit": 50, "offset": 0}
        counts = {r["title"]: r["chunk_count"] for r in data["resources"]}
        assert counts == {"Sales": 2, "Pitch": 0}

    def test_detail_lists_chunks(self, client, store):
        resource = store.add_resource(title="Guide")
        store.add_chunk(resource.id, 1, EmbeddingStatus.ERROR)
        store.add_chunk(resource.id, 0, EmbeddingStatus.COMPLETED)

        response = client.get(f"/resources/{resource.id}")

        assert response.status_code == 200
        chunks = response.json()["chunks"]
        assert [c["chunk_index"] for c in chunks] == [0, 1]
        assert [c["embedding_status"] for c in chunks] == ["completed", "error"]

    def test_unknown_resource_is_404(self, client):
        response = client.get(f"/resources/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"] == "resource_not_found"

    def test_status_reports_progress(self, client, store):
        resource = store.add_resource(embedding_status=EmbeddingStatus.PROCESSING)
        store.add_chunk(resource.id, 0, EmbeddingStatus.COMPLETED)
        store.add_chunk(resource.id, 1, EmbeddingStatus.COMPLETED)
        store.add_chunk(resource.id, 2, EmbeddingStatus.COMPLETED)
        store.add_chunk(resource.id, 3, EmbeddingStatus.PENDING)

        response = client.get(f"/resources/{resource.id}/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processing"
        assert data["progress"] == 75
        assert data["chunks"]["total"] == 4
        assert data["estimated_seconds_remaining"] == 1

    def test_status_unknown_resource(self, client):
        response = client.get(f"/resources/{uuid.uuid4()}/status")
        assert response.status_code == 404


class TestMutations:

    def test_content_change_requeues(self, client, store, mock_queue):
        resource = store.add_resource(
            title="Guide",
            content="old body",
            embedding_status=EmbeddingStatus.COMPLETED,
        )

        response = client.put(f"/resources/{resource.id}", json={"content": "new body"})

        assert response.status_code == 200
        assert response.json()["embedding_status"] == "pending"
        assert resource.content == "new body"
        job = mock_queue.enqueue.await_args.args[0]
        assert (job.title, job.content) == ("Guide", "new body")

    def test_edit_past_preview_requeues(self, client, store, mock_queue):
        resource = store.add_resource(
            title="Long guide",
            content="a" * 500 + "...",
            embedding_status=EmbeddingStatus.COMPLETED,
        )
        body = "a" * 500 + "b" * 100

        response = client.put(f"/resources/{resource.id}", json={"content": body})

        assert response.status_code == 200
        data = response.json()
        assert data["embedding_status"] == "pending"
        assert data["estimated_chunks"] == 1
        mock_queue.enqueue.assert_awaited_once()
        assert mock_queue.enqueue.await_args.args[0].content == body

    def test_unchanged_short_content_does_not_requeue(self, client, store, mock_queue):
        resource = store.add_resource(
            content="same body",
            embedding_status=EmbeddingStatus.COMPLETED,
        )

        response = client.put(f"/resources/{resource.id}", json={"content": "same body"})

        assert response.status_code == 200
        assert resource.embedding_status == EmbeddingStatus.COMPLETED
        mock_queue.enqueue.assert_not_awaited()

    def test_metadata_change_does_not_requeue(self, client, store, mock_queue):
        resource = store.add_resource(embedding_status=EmbeddingStatus.COMPLETED)

        response = client.put(f"/resources/{resource.id}", json={"active": False})

        assert response.status_code == 200
        assert resource.active is False
        assert resource.embedding_status == EmbeddingStatus.COMPLETED
        mock_queue.enqueue.assert_not_awaited()

    def test_delete_cancels_and_removes_chunks(self, client, store, mock_queue):
        resource = store.add_resource()
        store.add_chunk(resource.id, 0)

        response = client.delete(f"/resources/{resource.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "deleted"
        assert response.json()["count"] == 1
        mock_queue.cancel.assert_called_once_with(resource.id)
        assert store.resources == {}
        assert store.chunks == {}

    def test_delete_unknown_resource(self, client, mock_queue):
        response = client.delete(f"/resources/{uuid.uuid4()}")
        assert response.status_code == 404
        mock_queue.cancel.assert_not_called()

    def test_reprocess_resets_and_requeues(self, client, store, mock_queue):
        resource = store.add_resource(
            title="Guide",
            content="stored preview",
            embedding_status=EmbeddingStatus.ERROR,
        )
        store.add_chunk(resource.id, 0, EmbeddingStatus.ERROR)

        response = client.post(f"/resources/{resource.id}/reprocess")

        assert response.status_code == 200
        assert response.json()["embedding_status"] == "pending"
        assert store.chunks_for(resource.id) == []
        job = mock_queue.enqueue.await_args.args[0]
        assert job.content == "stored preview"


class TestSearch:

    def test_returns_ranked_resources(self, client, store):
        rid = uuid.uuid4()
        store.chunk_matches = [
            make_chunk_match(rid, 0.9, "first", 0, title="Guide"),
            make_chunk_match(rid, 0.7, "second", 3, title="Guide"),
        ]

        response = client.post("/search", json={"query": "closing", "limit": 3})

        assert response.status_code == 200
        (result,) = response.json()
        assert result["title"] == "Guide"
        assert result["similarity"] == 0.9
        assert result["chunks"] == ["first", "second"]
        assert store.search_limits == [6]

    def test_embedding_failure_is_502(self, client, mock_embedder):
        mock_embedder.embed.side_effect = ProviderError("provider down")

        response = client.post("/search", json={"query": "closing"})

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "query_embedding_failed"
        assert "provider down" not in data["detail"]

    @pytest.mark.parametrize(
        "payload",
        [{"query": ""}, {"query": "q", "limit": 0}, {"query": "q", "limit": 51}],
    )
    def test_rejects_invalid_request(self, client, payload):
        assert client.post("/search", json=payload).status_code == 422
