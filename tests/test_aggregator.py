import uuid

import pytest

from resource_rag.core.enums import Category, ResourceType
from resource_rag.core.errors import InvalidInputError, ProviderError, QueryEmbeddingError
from resource_rag.embeddings.models import ResourceMatch
from resource_rag.retrieval.aggregator import (
    CHUNK_SEPARATOR,
    RetrievalAggregator,
    aggregate_chunk_matches,
    category_allows,
)

from conftest import make_chunk_match


@pytest.mark.parametrize(
    "requested, category, expected",
    [
        (None, Category.META_ADS, True),
        (Category.GENERAL, Category.MANAGEMENT, True),
        (Category.COMMERCIAL, Category.COMMERCIAL, True),
        (Category.COMMERCIAL, Category.GENERAL, True),
        (Category.COMMERCIAL, Category.META_ADS, False),
    ],
)
def test_category_allows(requested, category, expected):
    assert category_allows(requested, category) is expected


class TestAggregation:

    def test_groups_by_resource_and_keeps_best_score(self):
        x, y = uuid.uuid4(), uuid.uuid4()
        matches = [
            make_chunk_match(x, 0.9, "x first", 4, title="X"),
            make_chunk_match(y, 0.7, "y only", 0, title="Y"),
            make_chunk_match(x, 0.8, "x second", 1, title="X"),
            make_chunk_match(x, 0.95, "x third", 7, title="X"),
        ]

        results = aggregate_chunk_matches(matches, limit=5)

        assert [r.id for r in results] == [x, y]
        assert results[0].similarity == 0.95
        assert results[0].chunks == ["x first", "x second", "x third"]
        assert results[0].content == CHUNK_SEPARATOR.join(["x first", "x second", "x third"])
        assert results[1].similarity == 0.7
        assert results[1].content == "y only"

    def test_keeps_at_most_three_chunks(self):
        x = uuid.uuid4()
        matches = [make_chunk_match(x, 0.5 + i / 10, f"c{i}", i) for i in range(5)]

        (result,) = aggregate_chunk_matches(matches, limit=5)

        assert result.chunks == ["c0", "c1", "c2"]
        # later chunks beyond the content cap still raise the score
        assert result.similarity == pytest.approx(0.9)

    def test_category_filter_keeps_general(self):
        commercial, general, ads = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        matches = [
            make_chunk_match(ads, 0.99, "ads", category=Category.META_ADS),
            make_chunk_match(commercial, 0.8, "sales", category=Category.COMMERCIAL),
            make_chunk_match(general, 0.6, "general", category=Category.GENERAL),
        ]

        results = aggregate_chunk_matches(matches, limit=5, category=Category.COMMERCIAL)

        assert [r.id for r in results] == [commercial, general]

    def test_limit_applied_after_sorting(self):
        ids = [uuid.uuid4() for _ in range(4)]
        matches = [
            make_chunk_match(rid, sim, "text")
            for rid, sim in zip(ids, [0.2, 0.9, 0.5, 0.7])
        ]

        results = aggregate_chunk_matches(matches, limit=2)

        assert [r.id for r in results] == [ids[1], ids[3]]

    def test_empty(self):
        assert aggregate_chunk_matches([], limit=5) == []


class TestSearch:

    async def test_searches_chunks_with_doubled_limit(self, store, mock_embedder):
        rid = uuid.uuid4()
        store.chunk_matches = [make_chunk_match(rid, 0.8, "match")]
        aggregator = RetrievalAggregator(mock_embedder)

        results = await aggregator.search(store, "how to close a sale", limit=4)

        mock_embedder.embed.assert_awaited_once_with("how to close a sale")
        assert store.search_limits == [8]
        assert [r.id for r in results] == [rid]

    async def test_falls_back_to_resource_vectors(self, store, mock_embedder):
        legacy = [
            ResourceMatch(
                id=uuid.uuid4(),
                type=ResourceType.VIDEO,
                title="Old video",
                category=Category.META_ADS,
                similarity=0.6,
                content="preview",
            ),
            ResourceMatch(
                id=uuid.uuid4(),
                type=ResourceType.PDF,
                title="Old guide",
                category=Category.COMMERCIAL,
                similarity=0.5,
            ),
        ]
        store.resource_matches = legacy
        aggregator = RetrievalAggregator(mock_embedder)

        results = await aggregator.search(store, "ads", category=Category.COMMERCIAL)

        assert [r.title for r in results] == ["Old guide"]

    async def test_no_fallback_when_chunks_match(self, store, mock_embedder):
        store.chunk_matches = [
            make_chunk_match(uuid.uuid4(), 0.4, "only", category=Category.META_ADS)
        ]
        store.resource_matches = [
            ResourceMatch(
                id=uuid.uuid4(),
                type=ResourceType.PDF,
                title="Legacy",
                category=Category.COMMERCIAL,
                similarity=0.9,
            )
        ]
        aggregator = RetrievalAggregator(mock_embedder)

        # chunk rows exist, so the category filter may leave nothing
        assert await aggregator.search(store, "q", category=Category.COMMERCIAL) == []

    @pytest.mark.parametrize("error", [ProviderError("down"), InvalidInputError("blank")])
    async def test_query_embedding_failure(self, store, mock_embedder, error):
        mock_embedder.embed.side_effect = error
        aggregator = RetrievalAggregator(mock_embedder)

        with pytest.raises(QueryEmbeddingError) as exc_info:
            await aggregator.search(store, "q")
        assert exc_info.value.__cause__ is error
        assert store.search_limits == []
