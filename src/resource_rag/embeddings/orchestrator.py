"""
Ingestion Orchestrator

Drives a resource from raw text to a fully embedded chunk set:

    pending -> processing -> completed | error

Chunks are created, embedded and persisted strictly in index order, one
group at a time, with an explicit pause after each group. Only the current
group's text and vectors are held in memory, and the pause caps the call
rate against the embedding provider.

Failure Semantics
-----------------
- Provider, input and storage failures are recorded per chunk (status
  ``error``) and the loop continues.
- Missing text aborts before any chunk is created (resource ``error``).
- Any unexpected exception still leaves the resource in ``error``.
- Cancellation stops before the next group and leaves the resource in
  ``processing`` with completed chunks intact.
- A chunk whose error status cannot be written after one retry stays in
  ``processing`` and is counted as ``stuck`` in the report.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from ..config import Settings, settings as default_settings
from ..core.enums import EmbeddingStatus
from ..core.errors import (
    AssemblyError,
    InvalidInputError,
    ProviderError,
    ResourceNotFoundError,
    StorageError,
)
from ..db.vector_store import VectorStore
from .chunker import TextChunk, chunk_text, count_chunks
from .embedder import Embedder
from .models import IngestionEstimate, IngestionProgress, IngestionReport

logger = logging.getLogger("rag.ingestion")

PARAGRAPH_SEPARATOR = "\n\n"
PREVIEW_CHARS = 500
ERROR_ROW_CHARS = 1000
PROGRESS_LOG_EVERY = 10
FAIL_CHUNK_ATTEMPTS = 2
UNFINISHED_STATUSES = frozenset({EmbeddingStatus.PENDING, EmbeddingStatus.PROCESSING})


@dataclass(frozen=True)
class IngestionConfig:
    """
    Per-orchestrator ingestion policy.

    Attributes
    ----------
    inter_segment_delay : float
        Seconds to pause after each chunk group.
    sub_batch_size : int
        Chunks per embedding call. 1 embeds each chunk on its own.
    max_tokens, overlap_tokens, chars_per_token : int
        Chunking budgets.
    per_call_overhead : float
        Seconds added per chunk when estimating processing time.
    """
    inter_segment_delay: float = 2.0
    sub_batch_size: int = 1
    max_tokens: int = 500
    overlap_tokens: int = 50
    chars_per_token: int = 4
    per_call_overhead: float = 0.5

    @property
    def max_chars(self) -> int:
        return self.max_tokens * self.chars_per_token

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * self.chars_per_token

    @property
    def seconds_per_chunk(self) -> float:
        return self.inter_segment_delay + self.per_call_overhead

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "IngestionConfig":
        s = s or default_settings
        return cls(
            inter_segment_delay=s.inter_segment_delay_seconds,
            sub_batch_size=max(1, s.segments_per_call),
            max_tokens=s.chunk_max_tokens,
            overlap_tokens=s.chunk_overlap_tokens,
            chars_per_token=s.chars_per_token,
            per_call_overhead=s.per_call_overhead_seconds,
        )


@dataclass
class IngestionJob:
    """Represents a request to (re)ingest a resource."""
    resource_id: uuid.UUID
    title: Optional[str]
    description: Optional[str] = None
    content: Optional[str] = None

    # Metadata for tracing
    request_id: str = "unknown"


def assemble_text(parts: Iterable[Optional[str]]) -> str:
    """
    Join the non-blank parts with a paragraph separator.
    """
    return PARAGRAPH_SEPARATOR.join(p for p in parts if p and p.strip())


def content_preview(content: Optional[str]) -> Optional[str]:
    """
    Bounded preview of a body stored on the resource row.
    """
    if not content:
        return None
    if len(content) <= PREVIEW_CHARS:
        return content
    return content[:PREVIEW_CHARS] + "..."


def needs_reingest(
    status: EmbeddingStatus,
    rebuild_all: bool = False,
    include_processing: bool = False,
) -> bool:
    """
    Decide whether an offline re-ingestion run should pick up a resource.

    ``error`` and ``pending`` resources are always selected; ``pending``
    covers jobs lost from the in-memory queue at shutdown. ``processing``
    rows may belong to a live worker, so they are selected only when
    ``include_processing`` is set, which is safe only while no server is
    running. ``rebuild_all`` selects every other resource as well.
    """
    if status == EmbeddingStatus.PROCESSING:
        return include_processing
    return rebuild_all or status in (EmbeddingStatus.ERROR, EmbeddingStatus.PENDING)


def _groups(chunks: Iterator[TextChunk], size: int) -> Iterator[List[TextChunk]]:
    while True:
        group = list(islice(chunks, size))
        if not group:
            return
        yield group


class IngestionOrchestrator:
    """
    Per-resource ingestion state machine.

    The orchestrator is stateless across resources; the store is passed
    per call so each job can run inside its own database session.
    """

    def __init__(
        self,
        embedder: Embedder,
        config: Optional[IngestionConfig] = None,
    ) -> None:
        self._embedder = embedder
        self.config = config or IngestionConfig.from_settings()

    # ------------------------------------------------------------------
    # Estimation and progress
    # ------------------------------------------------------------------

    def count(self, text: Optional[str]) -> int:
        return count_chunks(
            text,
            self.config.max_tokens,
            self.config.overlap_tokens,
            self.config.chars_per_token,
        )

    def estimate(self, text: Optional[str]) -> IngestionEstimate:
        """
        Predict chunk count and processing time for a text.
        """
        chunks = self.count(text)
        return IngestionEstimate(
            chunks=chunks,
            seconds=math.ceil(chunks * self.config.seconds_per_chunk),
        )

    async def get_progress(
        self,
        store: VectorStore,
        resource_id: uuid.UUID,
    ) -> IngestionProgress:
        """
        Report per-status chunk counts, completion percentage and the
        estimated seconds remaining for a resource.

        Raises
        ------
        ResourceNotFoundError
            If the resource does not exist.
        """
        resource = await store.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")

        counts = await store.chunk_status_counts(resource_id)
        total = sum(counts.values())
        completed = counts.get(EmbeddingStatus.COMPLETED, 0)
        remaining = counts.get(EmbeddingStatus.PENDING, 0) + counts.get(
            EmbeddingStatus.PROCESSING, 0
        )
        # A finished run leaves nothing to wait for, even if a chunk's
        # error status could not be written.
        if resource.embedding_status not in UNFINISHED_STATUSES:
            remaining = 0

        chunks = {status.value: counts.get(status, 0) for status in EmbeddingStatus}
        chunks["total"] = total

        return IngestionProgress(
            resource_id=resource.id,
            title=resource.title,
            status=resource.embedding_status,
            chunks=chunks,
            progress=round(completed / total * 100) if total else 0,
            estimated_seconds_remaining=math.ceil(
                remaining * self.config.seconds_per_chunk
            ),
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        store: VectorStore,
        job: IngestionJob,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IngestionReport:
        """
        Chunk, embed and persist a resource, superseding prior chunks.

        Parameters
        ----------
        store : VectorStore
            Gateway bound to a session owned by the caller.
        job : IngestionJob
            Resource id and the text parts to assemble.
        cancel_event : Optional[asyncio.Event]
            Checked before each chunk group.

        Returns
        -------
        IngestionReport
            Final status and per-chunk outcome counts.
        """
        resource_id = job.resource_id
        report = IngestionReport(resource_id=resource_id)

        try:
            await store.set_resource_status(resource_id, EmbeddingStatus.PROCESSING)
            removed = await store.delete_chunks(resource_id)
            await store.commit()
            if removed:
                logger.info("[%s] Removed %d previous chunks", resource_id, removed)

            text = assemble_text((job.title, job.description, job.content))
            if not text.strip():
                raise AssemblyError("Resource has no content to process")

            report.total = self.count(text)
            if report.total == 0:
                raise AssemblyError("Resource text produced no chunks")

            logger.info(
                "[%s] Starting ingestion: %d chunks (request %s)",
                resource_id,
                report.total,
                job.request_id,
            )

            chunks = chunk_text(
                text,
                self.config.max_tokens,
                self.config.overlap_tokens,
                self.config.chars_per_token,
            )
            processed = 0

            for group in _groups(chunks, self.config.sub_batch_size):
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    logger.info(
                        "[%s] Ingestion cancelled after %d/%d chunks",
                        resource_id,
                        processed,
                        report.total,
                    )
                    return report

                await self._process_group(store, resource_id, group, report)
                processed += len(group)

                if processed % PROGRESS_LOG_EVERY < len(group) or processed >= report.total:
                    logger.info(
                        "[%s] %d/%d (%d OK, %d err)",
                        resource_id,
                        processed,
                        report.total,
                        report.completed,
                        report.errors,
                    )

                if processed < report.total and self.config.inter_segment_delay > 0:
                    await asyncio.sleep(self.config.inter_segment_delay)

            report.status = (
                EmbeddingStatus.COMPLETED if report.completed > 0 else EmbeddingStatus.ERROR
            )
            await store.set_resource_status(resource_id, report.status)
            await store.commit()

            logger.info(
                "[%s] Done: %d OK, %d errors, %d stuck",
                resource_id,
                report.completed,
                report.errors,
                report.stuck,
            )

        except AssemblyError as exc:
            logger.warning("[%s] %s", resource_id, exc)
            report.status = await self._mark_failed(store, resource_id)

        except Exception:
            logger.exception("[%s] Fatal ingestion error", resource_id)
            report.status = await self._mark_failed(store, resource_id)

        return report

    async def delete_resource(self, store: VectorStore, resource_id: uuid.UUID) -> int:
        """
        Delete a resource and its chunks.

        Returns the number of deleted resource rows (0 or 1).
        """
        deleted = await store.delete_resource(resource_id)
        await store.commit()
        return deleted

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _process_group(
        self,
        store: VectorStore,
        resource_id: uuid.UUID,
        group: Sequence[TextChunk],
        report: IngestionReport,
    ) -> None:
        rows: List[Tuple[TextChunk, uuid.UUID]] = []
        for chunk in group:
            try:
                row = await store.create_chunk(
                    resource_id,
                    chunk.index,
                    chunk.content,
                    chunk.approx_tokens,
                    status=EmbeddingStatus.PROCESSING,
                )
                await store.commit()
                rows.append((chunk, row.id))
            except StorageError as exc:
                logger.error("[%s] Chunk %d could not be created: %s", resource_id, chunk.index, exc)
                await self._record_error_row(store, resource_id, chunk)
                report.errors += 1

        if not rows:
            return

        try:
            if len(rows) == 1:
                vectors = [await self._embedder.embed(rows[0][0].content)]
            else:
                vectors = await self._embedder.embed_batch([c.content for c, _ in rows])
                if len(vectors) != len(rows):
                    raise ProviderError(
                        f"Expected {len(rows)} vectors, got {len(vectors)}"
                    )
        except (ProviderError, InvalidInputError) as exc:
            logger.error(
                "[%s] Embedding failed for chunks %s: %s",
                resource_id,
                [c.index for c, _ in rows],
                exc,
            )
            for _, chunk_id in rows:
                if not await self._fail_chunk(store, resource_id, chunk_id):
                    report.stuck += 1
            report.errors += len(rows)
            return

        for (chunk, chunk_id), vector in zip(rows, vectors):
            try:
                await store.complete_chunk(chunk_id, vector)
                await store.commit()
                report.completed += 1
            except StorageError as exc:
                logger.error("[%s] Chunk %d vector write failed: %s", resource_id, chunk.index, exc)
                if not await self._fail_chunk(store, resource_id, chunk_id):
                    report.stuck += 1
                report.errors += 1

    async def _fail_chunk(
        self,
        store: VectorStore,
        resource_id: uuid.UUID,
        chunk_id: uuid.UUID,
    ) -> bool:
        """
        Move a chunk to ``error``, retrying once after the store's rollback.

        Returns False if the chunk is left in ``processing``.
        """
        for attempt in range(1, FAIL_CHUNK_ATTEMPTS + 1):
            try:
                await store.fail_chunk(chunk_id)
                await store.commit()
                return True
            except StorageError as exc:
                logger.warning(
                    "[%s] Could not mark chunk %s as error (attempt %d): %s",
                    resource_id,
                    chunk_id,
                    attempt,
                    exc,
                )
        logger.error("[%s] Chunk %s left in processing", resource_id, chunk_id)
        return False

    async def _record_error_row(
        self,
        store: VectorStore,
        resource_id: uuid.UUID,
        chunk: TextChunk,
    ) -> None:
        try:
            await store.create_chunk(
                resource_id,
                chunk.index,
                chunk.content[:ERROR_ROW_CHARS],
                chunk.approx_tokens,
                status=EmbeddingStatus.ERROR,
            )
            await store.commit()
        except StorageError:
            logger.exception("[%s] Could not record error row for chunk %d", resource_id, chunk.index)

    async def _mark_failed(
        self,
        store: VectorStore,
        resource_id: uuid.UUID,
    ) -> EmbeddingStatus:
        try:
            await store.rollback()
            await store.set_resource_status(resource_id, EmbeddingStatus.ERROR)
            await store.commit()
        except Exception:
            logger.exception("[%s] Could not mark resource as error", resource_id)
        return EmbeddingStatus.ERROR
