"""
Re-ingest resources from the command line.

By default resources in ``error`` or ``pending`` are re-ingested; pass --all
to rebuild every other resource too. Rows in ``processing`` are skipped unless
--include-processing is given: they may belong to a running server's
worker, so use that flag only while the server is stopped. A live server
may also still hold ``pending`` rows in its queue; run the script after
the server has shut down.
Resources are processed one after another with the configured pacing.
"""
import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from resource_rag.db import AsyncSessionLocal, VectorStore, init_db
from resource_rag.embeddings.embedder import Embedder
from resource_rag.embeddings.orchestrator import (
    IngestionConfig,
    IngestionJob,
    IngestionOrchestrator,
    needs_reingest,
)


async def main(rebuild_all: bool, include_processing: bool, page_size: int = 100):
    await init_db()
    orchestrator = IngestionOrchestrator(Embedder(), IngestionConfig.from_settings())

    print("Fetching resources...")
    async with AsyncSessionLocal() as session:
        store = VectorStore(session)
        total = await store.count_resources()
        resources = []
        for offset in range(0, total, page_size):
            rows = await store.list_resources(limit=page_size, offset=offset)
            resources.extend(resource for resource, _ in rows)

    selected = [
        r for r in resources
        if needs_reingest(r.embedding_status, rebuild_all, include_processing)
    ]
    print(f"Found {len(resources)} resources, {len(selected)} to re-ingest.")

    for i, resource in enumerate(selected):
        print(f"Processing ({i+1}/{len(selected)}): {resource.title}")
        job = IngestionJob(
            resource_id=resource.id,
            title=resource.title,
            description=resource.description,
            content=resource.content,
            request_id="cli",
        )
        async with AsyncSessionLocal() as session:
            report = await orchestrator.ingest(VectorStore(session), job)
        print(
            f"  {report.status.value}: {report.completed}/{report.total} chunks "
            f"({report.errors} errors, {report.stuck} stuck)"
        )

    print("Done!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--all", action="store_true", help="re-ingest every resource")
    parser.add_argument(
        "--include-processing",
        action="store_true",
        help="also re-ingest rows stuck in processing (server must be stopped)",
    )
    args = parser.parse_args()
    asyncio.run(main(rebuild_all=args.all, include_processing=args.include_processing))
