"""
Async queue and worker pool for background ingestion jobs.

Submission handlers enqueue and return immediately; a fixed number of
workers bounds how many resources are ingested (and hit the embedding
provider) at once. Jobs for the same resource are serialized, and a newer
job supersedes an older queued or running one.
"""
import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.vector_store import VectorStore
from .models import IngestionReport
from .orchestrator import IngestionJob, IngestionOrchestrator

logger = logging.getLogger("rag.queue")


class IngestionQueue:
    """Job queue with a bounded pool of ingestion workers."""

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        session_factory: Callable[[], AsyncSession],
        concurrency: int = 2,
    ):
        self._orchestrator = orchestrator
        self._session_factory = session_factory
        self._concurrency = max(1, concurrency)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}
        self._lock_refs: Dict[uuid.UUID, int] = {}
        self._cancel_events: Dict[uuid.UUID, asyncio.Event] = {}

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def qsize(self) -> int:
        return self._queue.qsize()

    async def enqueue(self, job: IngestionJob) -> int:
        """Add a job to the queue. Returns current queue size."""
        previous = self._cancel_events.get(job.resource_id)
        if previous is not None:
            previous.set()

        event = asyncio.Event()
        self._cancel_events[job.resource_id] = event
        await self._queue.put((job, event))

        qsize = self._queue.qsize()
        logger.info("Job enqueued: %s (Queue size: %d)", job.resource_id, qsize)
        return qsize

    def cancel(self, resource_id: uuid.UUID) -> bool:
        """
        Signal the queued or running job for a resource to stop.

        Returns True if a job was signalled.
        """
        event = self._cancel_events.get(resource_id)
        if event is None:
            return False
        event.set()
        return True

    def start(self) -> None:
        if self._workers:
            return
        for n in range(self._concurrency):
            self._workers.append(
                asyncio.create_task(self._worker(n), name=f"ingestion-worker-{n}")
            )
        logger.info("Started %d ingestion workers.", self._concurrency)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Ingestion workers stopped.")

    async def join(self) -> None:
        await self._queue.join()

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, n: int) -> None:
        logger.info("Ingestion worker %d started.", n)

        while True:
            try:
                job, event = await self._queue.get()
            except asyncio.CancelledError:
                logger.info("Ingestion worker %d cancelled.", n)
                break

            try:
                await self.run_job(job, event)
            except asyncio.CancelledError:
                logger.info("Ingestion worker %d cancelled mid-job.", n)
                self._queue.task_done()
                break
            except Exception:
                logger.exception("Unexpected error in ingestion worker %d", n)
            self._queue.task_done()

    async def run_job(
        self,
        job: IngestionJob,
        event: Optional[asyncio.Event] = None,
    ) -> Optional[IngestionReport]:
        """
        Execute one job inside a dedicated session, serialized per resource.

        Returns None when the job was superseded before it started.
        """
        event = event or asyncio.Event()
        rid = job.resource_id
        lock = self._locks.setdefault(rid, asyncio.Lock())
        self._lock_refs[rid] = self._lock_refs.get(rid, 0) + 1

        try:
            async with lock:
                if event.is_set():
                    logger.info("Skipping superseded job for %s", rid)
                    return None

                logger.info("Processing ingestion job: %s (%s)", rid, job.request_id)
                async with self._session_factory() as session:
                    report = await self._orchestrator.ingest(
                        VectorStore(session), job, cancel_event=event
                    )
                logger.info(
                    "Finished ingestion job: %s (%s)",
                    rid,
                    report.status.value,
                )
                return report
        finally:
            if self._cancel_events.get(rid) is event:
                del self._cancel_events[rid]
            self._lock_refs[rid] -= 1
            if not self._lock_refs[rid]:
                del self._lock_refs[rid]
                del self._locks[rid]
