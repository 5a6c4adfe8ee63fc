"""
Embedding Client

This module implements a test-friendly embedding client for the OpenAI
embeddings API (or any compatible provider). It is responsible for:

- Rejecting empty input and truncating oversized input
- Partitioning batches into provider-sized sub-batches
- Network and transport error isolation
- Strict response validation

The client never retries; callers decide whether a failure is fatal.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import settings
from ..core.errors import InvalidInputError, ProviderError

logger = logging.getLogger("rag.embedder")

# ~8000 tokens at 4 chars/token
MAX_INPUT_CHARS = 32000
DEFAULT_SUB_BATCH_SIZE = 100


class Embedder:
    """
    Asynchronous embedding generator for single texts and batches.

    This class performs no caching and holds no connection state between
    calls, so one instance can be shared by request handlers and ingestion
    workers.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        sub_batch_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Optional override for the API key. Defaults to settings.openai_api_key.

        model : Optional[str]
            Optional override for embedding model. Defaults to settings.embedding_model.

        base_url : Optional[str]
            Embeddings endpoint. Defaults to settings.embedding_api_url.

        timeout : Optional[float]
            HTTP timeout for each request. A timeout is reported as ProviderError.

        sub_batch_size : Optional[int]
            Maximum inputs per provider call in embed_batch().

        transport : Optional[httpx.AsyncBaseTransport]
            Transport override, e.g. httpx.MockTransport in tests.
        """
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.embedding_model
        self.base_url = base_url or settings.embedding_api_url
        self.timeout = timeout if timeout is not None else settings.embedding_timeout_seconds
        self.sub_batch_size = sub_batch_size or settings.embedding_batch_size or DEFAULT_SUB_BATCH_SIZE
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Text longer than MAX_INPUT_CHARS is silently truncated, so the
        vector represents only the retained prefix.

        Raises
        ------
        InvalidInputError
            If text is empty or whitespace-only.
        ProviderError
            If the provider call fails or the response is malformed.
        """
        if not text or not text.strip():
            raise InvalidInputError("Text is required for embedding generation")

        async with self._client() as client:
            embeddings = await self._request(client, text[:MAX_INPUT_CHARS], expected=1)

        return embeddings[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Empty and whitespace-only entries are dropped before submission;
        the returned vectors correspond positionally to the surviving
        entries, in input order.

        Returns
        -------
        List[List[float]]
            One vector per non-empty input. An empty list (no provider
            call) when nothing survives filtering.

        Raises
        ------
        ProviderError
            If any sub-batch fails or the response is malformed.
        """
        valid = [
            stripped[:MAX_INPUT_CHARS]
            for stripped in ((t or "").strip() for t in texts)
            if stripped
        ]
        if not valid:
            return []

        all_embeddings: List[List[float]] = []

        async with self._client() as client:
            for start in range(0, len(valid), self.sub_batch_size):
                batch = valid[start : start + self.sub_batch_size]
                embeddings = await self._request(client, batch, expected=len(batch))
                all_embeddings.extend(embeddings)

        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _request(
        self,
        client: httpx.AsyncClient,
        payload_input,
        expected: int,
    ) -> List[List[float]]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {
            "model": self.model,
            "input": payload_input,
        }

        try:
            response = await client.post(
                self.base_url,
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.error(
                "Embedding request failed (%s): inputs=%d, error=%s",
                type(exc).__name__,
                expected,
                str(exc),
            )
            raise ProviderError(
                f"Embedding generation failed: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise ProviderError("Embedding response is not valid JSON.") from exc

        embeddings = self._extract_embeddings(data)
        if len(embeddings) != expected:
            raise ProviderError(
                f"Embedding count mismatch: expected {expected}, got {len(embeddings)}."
            )
        return embeddings

    @staticmethod
    def _extract_embeddings(data) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are reordered by their "index" field when present.

        Raises
        ------
        ProviderError
            If the API returns unexpected structure.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise ProviderError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise ProviderError("'data' field must be a list.")

        if all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise ProviderError(
                    f"Malformed embedding record at index {index}: {record!r}"
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not emb or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise ProviderError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
