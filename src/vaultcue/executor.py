"""Task bodies: turn a task into store writes."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from vaultcue.cancellation import CancellationToken
from vaultcue.chunker import TextSplitter
from vaultcue.errors import EmbeddingError, StoreError, VaultcueError
from vaultcue.models import Chunk, ChunkRecord, ProgressUpdate, Task, TaskKind
from vaultcue.protocols import ChunkStore, ContentSource, Embedder, ProgressReporter
from vaultcue.settings import StoreSettings

logger = logging.getLogger(__name__)

STEP_COUNT = 5


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it as is."""
    if inspect.isawaitable(value):
        return await value
    return value


class DocumentProcessor:
    """
    Executes CREATE, UPDATE and DELETE tasks against the collaborators.

    Used as the queue's handler: ``await processor(task, token)``. Store
    writes get their own bounded retry with exponential backoff, independent
    of the queue's task-level retry.

    Example:
        processor = DocumentProcessor(source, embedder, store)
        queue = IngestQueue(processor)
    """

    def __init__(
        self,
        source: ContentSource,
        embedder: Embedder,
        store: ChunkStore,
        splitter: TextSplitter | None = None,
        reporter: ProgressReporter | None = None,
        store_settings: StoreSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.source = source
        self.embedder = embedder
        self.store = store
        self.splitter = splitter or TextSplitter()
        self.reporter = reporter
        self.store_settings = store_settings or StoreSettings()
        self._sleep = sleep

    async def __call__(self, task: Task, token: CancellationToken) -> dict[str, Any]:
        return await self.process(task, token)

    async def process(self, task: Task, token: CancellationToken) -> dict[str, Any]:
        """Run one task. Returns a small summary dict."""
        if task.kind in (TaskKind.CREATE, TaskKind.UPDATE):
            return await self._index_document(task, token)
        if task.kind is TaskKind.DELETE:
            return await self._delete_document(task, token)
        raise VaultcueError(f"Unsupported task kind: {task.kind}", code="UNSUPPORTED_TASK")

    async def _index_document(self, task: Task, token: CancellationToken) -> dict[str, Any]:
        token.check()
        self._progress(task, 10, "Reading content", 1)
        content = await self._read(task)

        token.check()
        self._progress(task, 20, "Splitting content", 2)
        chunks = self.splitter.split(content, task.metadata)

        if not chunks:
            logger.info("No chunks for %s, updating status only", task.id)
            await self._store_call(
                "update_document_status", self.store.update_document_status, task.id, task.metadata
            )
            self._progress(task, 100, "Processing completed", STEP_COUNT)
            return {"chunks": 0}

        self._progress(task, 40, "Generating embeddings", 3)
        records = []
        for i, chunk in enumerate(chunks):
            token.check()
            embedding = await self._embed(task, chunk)
            records.append(ChunkRecord(
                document_id=task.id,
                chunk_index=chunk.index,
                content=chunk.content,
                metadata=chunk.metadata,
                embedding=embedding,
            ))
            self._progress(
                task,
                40 + (i + 1) * 30 // len(chunks),
                f"Processed {i + 1} of {len(chunks)} chunks",
                3,
            )

        token.check()
        self._progress(task, 70, "Saving to database", 4)
        await self._with_store_retry("upsert_chunks", self.store.upsert_chunks, records)

        self._progress(task, 100, "Processing completed", STEP_COUNT)
        return {"chunks": len(records)}

    async def _delete_document(self, task: Task, token: CancellationToken) -> dict[str, Any]:
        token.check()
        existing = await self._store_call("count_chunks", self.store.count_chunks, task.id)
        logger.debug("Deleting %s existing chunks for %s", existing, task.id)

        self._progress(task, 50, "Deleting from database", 4)
        await self._with_store_retry("delete_chunks", self._delete_and_verify, task.id)

        self._progress(task, 100, "Delete completed", STEP_COUNT)
        return {"deleted": existing}

    async def _delete_and_verify(self, document_id: str) -> None:
        await maybe_await(self.store.delete_chunks(document_id))
        remaining = await maybe_await(self.store.count_chunks(document_id))
        if remaining:
            raise StoreError(
                f"{remaining} chunks remain for {document_id} after delete",
                code="DELETE_VERIFICATION_FAILED",
            )

    async def _read(self, task: Task) -> str:
        if task.payload and "content" in task.payload:
            return task.payload["content"]
        return await maybe_await(self.source.read_content(task.id))

    async def _embed(self, task: Task, chunk: Chunk) -> list[float]:
        try:
            vector = await maybe_await(self.embedder.embed(chunk.content))
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding chunk {chunk.index} of {task.id} failed: {e}") from e
        return list(vector)

    async def _store_call(self, name: str, func: Callable, *args: Any) -> Any:
        try:
            return await maybe_await(func(*args))
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"{name} failed: {e}") from e

    async def _with_store_retry(self, name: str, func: Callable, *args: Any) -> Any:
        """Call a store operation, retrying with ``2 ** attempt`` backoff."""
        attempts = self.store_settings.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._store_call(name, func, *args)
            except StoreError as e:
                if attempt == attempts:
                    raise
                delay = self.store_settings.backoff_base * 2 ** attempt
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    name, attempt, attempts, delay, e,
                )
                await self._sleep(delay)

    def _progress(self, task: Task, percent: int, step: str, step_index: int) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter.report_progress(ProgressUpdate(
                task_id=task.id,
                percent=percent,
                step=step,
                step_index=step_index,
                step_count=STEP_COUNT,
            ))
        except Exception:
            # Don't let reporter errors affect flow
            logger.debug("Progress reporter failed for %s", task.id, exc_info=True)
