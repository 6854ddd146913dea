#!/usr/bin/env python3
"""
Notes Folder Indexer

Indexes every markdown file of a folder into a SQLite chunk store, using an
Ollama server for embeddings.

Demonstrates:
- A real embedding provider over HTTP (Ollama /api/embed)
- Priority: recently modified notes are indexed first
- Frontmatter, tags and wiki-links carried as chunk metadata
- Backpressure when the folder holds more notes than the queue capacity
- Deleting notes that disappeared since the last run
- Progress events and final queue stats

Usage:
    python main.py ~/notes --db notes.db --model bge-m3
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path

import httpx

import vaultcue
from vaultcue import ChunkingError, EmbeddingError, QueueFull, Task, TaskKind
from vaultcue.db import SqliteChunkStore

OLLAMA_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")


class FolderSource:
    """Reads notes from disk; document ids are paths relative to the root."""

    def __init__(self, root: Path):
        self.root = root

    def read_content(self, document_id):
        return (self.root / document_id).read_text(encoding="utf-8")


class OllamaEmbedder:
    def __init__(self, client: httpx.AsyncClient, model: str):
        self.client = client
        self.model = model

    async def embed(self, text):
        try:
            resp = await self.client.post(
                f"{OLLAMA_URL}/api/embed",
                json={"model": self.model, "input": [text]},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Ollama request failed: {e}") from e

        embeddings = resp.json().get("embeddings", [])
        if not embeddings:
            raise EmbeddingError("Ollama returned no embeddings")
        return embeddings[0]


class PrintReporter:
    def report_progress(self, update):
        if update.percent in (0, 100):
            print(f"  {update.percent:>3}% {update.task_id}: {update.step}", flush=True)


def note_metadata(root: Path, path: Path):
    stat = path.stat()
    doc_id = str(path.relative_to(root))
    try:
        return vaultcue.extract_metadata(
            doc_id,
            path.read_text(encoding="utf-8"),
            size=stat.st_size,
            modified=stat.st_mtime,
        )
    except ChunkingError as e:
        logging.warning("Skipping frontmatter of %s: %s", doc_id, e)
        return vaultcue.DocumentMetadata(path=doc_id, size=stat.st_size, modified=stat.st_mtime)


async def submit_with_backpressure(queue, task):
    while True:
        try:
            return await queue.submit(task)
        except QueueFull:
            await asyncio.sleep(0.05)


async def run(root: Path, db_path: str, model: str, settings: vaultcue.Settings):

    store = await SqliteChunkStore.open(db_path)
    notes = sorted(root.rglob("*.md"))
    print(f"Found {len(notes)} notes in {root}")

    async with httpx.AsyncClient(timeout=60.0) as client:
        processor = vaultcue.DocumentProcessor(
            FolderSource(root),
            OllamaEmbedder(client, model),
            store,
            splitter=vaultcue.TextSplitter(settings.chunking),
            reporter=PrintReporter(),
            store_settings=settings.store,
        )
        queue = vaultcue.IngestQueue(processor, settings=settings.queue)

        @queue.on("task-status")
        def on_status(event):
            if event.status.value == "failed":
                print(f"  FAILED {event.task_id}: {event.reason}")

        queue.start()

        # Newest notes first
        newest = sorted(notes, key=lambda p: p.stat().st_mtime, reverse=True)
        for rank, path in enumerate(newest):
            meta = note_metadata(root, path)
            await submit_with_backpressure(queue, Task(
                id=meta.path,
                kind=TaskKind.UPDATE,
                priority=1 if rank < 10 else 0,
                metadata=meta.to_dict(),
            ))

        # Remove notes that no longer exist on disk
        current = {str(p.relative_to(root)) for p in notes}
        for doc_id in await store.list_documents(status="indexed"):
            if doc_id not in current:
                await submit_with_backpressure(queue, Task(id=doc_id, kind=TaskKind.DELETE))

        await queue.join()
        await queue.stop()

    stats = queue.get_stats()
    print(
        f"\nDone: {stats.by_status['completed']} completed, {stats.failed_count} failed, "
        f"avg {stats.avg_processing_time_ms:.0f}ms per note"
    )
    for entry in queue.errors.entries(level="error", limit=5):
        print(f"  [{entry.code}] {entry.context.task_id}: {entry.error}")

    await store.close()


def main():
    parser = argparse.ArgumentParser(description="Index a folder of markdown notes")
    parser.add_argument("root", type=Path)
    parser.add_argument("--db", default="notes.db")
    parser.add_argument("--model", default=os.environ.get("OLLAMA_EMBEDDING_MODEL", "bge-m3"))
    parser.add_argument("--concurrent", type=int, default=3)
    args = parser.parse_args()

    # VAULTCUE_* environment, e.g. VAULTCUE_DEBUG__LOG_LEVEL=debug
    settings = vaultcue.Settings()
    settings.queue.max_concurrent = args.concurrent

    logging.basicConfig(level=settings.debug.level, format="%(levelname)s: %(message)s")
    asyncio.run(run(args.root.expanduser(), args.db, args.model, settings))


if __name__ == "__main__":
    main()
