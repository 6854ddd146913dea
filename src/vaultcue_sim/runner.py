"""Simulation runner for vaultcue-sim.

This module handles the actual simulation logic, decoupled from display.
It updates a SimulationState object that can be rendered by any display.
"""

from __future__ import annotations

import asyncio
import hashlib
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import vaultcue
from vaultcue import EmbeddingError, Task, TaskEvent, TaskKind, TaskStatus
from vaultcue.db import SqliteChunkStore
from vaultcue.errors import QueueFull
from vaultcue.metadata import extract_metadata

if TYPE_CHECKING:
    from vaultcue_sim.display import SimulationState

WORDS = (
    "vault note link graph index chunk vector query tag folder draft idea "
    "meeting project daily review summary source quote task reference"
).split()


@dataclass
class SimConfig:
    """Configuration for a simulation run."""

    count: int = 100
    latency_ms: int = 20  # Per embedding call
    latency_jitter: float = 0.2  # ±20% variance
    error_rate: float = 0.0  # Chance that an embedding call fails
    churn: float = 0.2  # Chance of a follow-up update or delete per document
    duration: float | None = None
    db_path: str = ":memory:"
    max_concurrent: int = 3
    max_retries: int = 3
    retry_delay: float = 0.1
    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100
    paragraphs: int = 6  # Average paragraphs per document
    submit_rate: float | None = None  # documents/second, None = batch
    stall_timeout: float | None = None
    seed: int | None = None


def make_document(rng: random.Random, paragraphs: int) -> str:
    """Generate a note with frontmatter tags, wiki-links and random paragraphs."""
    tags = rng.sample(WORDS, 2)
    blocks = [f"---\ntags: [{tags[0]}, {tags[1]}]\n---"]
    for _ in range(max(1, int(rng.gauss(paragraphs, paragraphs / 3)))):
        sentences = []
        for _ in range(rng.randint(1, 8)):
            words = rng.choices(WORDS, k=rng.randint(4, 18))
            sentences.append(" ".join(words).capitalize() + rng.choice(".!?"))
        if rng.random() < 0.3:
            sentences.append(f"See [[{rng.choice(WORDS)}]] #{rng.choice(WORDS)}.")
        blocks.append(" ".join(sentences))
    return "\n\n".join(blocks)


class MemoryVault:
    """Content source holding generated documents in memory."""

    def __init__(self) -> None:
        self.documents: dict[str, str] = {}

    async def read_content(self, document_id: str) -> str:
        await asyncio.sleep(0)
        return self.documents[document_id]


class MockEmbedder:
    """Embedding provider with configurable latency and failure rate."""

    def __init__(self, config: SimConfig, rng: random.Random, dimensions: int = 8) -> None:
        self.config = config
        self.rng = rng
        self.dimensions = dimensions
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        base_latency = self.config.latency_ms / 1000.0
        if base_latency > 0:
            jitter = self.config.latency_jitter
            await asyncio.sleep(base_latency * self.rng.uniform(1 - jitter, 1 + jitter))

        if self.rng.random() < self.config.error_rate:
            raise EmbeddingError("Simulated embedding failure")

        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 for b in digest[: self.dimensions]]


class SimulationRunner:
    """Runs simulations and updates state for display.

    This class is decoupled from display - it just updates state.
    The display polls state to render.

    Usage:
        config = SimConfig(count=100, latency_ms=50)
        state = SimulationState()
        runner = SimulationRunner(config, state)

        # In your event loop:
        await runner.run()
    """

    def __init__(
        self,
        config: SimConfig,
        state: "SimulationState",
        on_event: Callable[[str, str, str | None, str], None] | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.state = state
        self.on_event = on_event or state.add_event
        self.rng = rng or random.Random(config.seed)

        self.vault = MemoryVault()
        self.embedder = MockEmbedder(config, self.rng)
        self._store: SqliteChunkStore | None = None
        self._queue: vaultcue.IngestQueue | None = None
        self._running = False

    async def run(self) -> None:
        """Run the simulation to completion."""
        self._running = True
        self.state.start_time = time.time()
        self.state.target_count = self.config.count
        self.state.latency_ms = self.config.latency_ms
        self.state.latency_jitter = self.config.latency_jitter
        self.state.error_rate = self.config.error_rate
        self.state.max_concurrent = self.config.max_concurrent

        settings = vaultcue.Settings.from_mapping({
            "chunking": {
                "chunk_size": self.config.chunk_size,
                "chunk_overlap": self.config.chunk_overlap,
                "min_chunk_size": self.config.min_chunk_size,
            },
            "queue": {
                "max_concurrent": self.config.max_concurrent,
                "max_retries": self.config.max_retries,
                "retry_delay": self.config.retry_delay,
                "retry_backoff_base": self.config.retry_delay,
            },
            "store": {"db_path": self.config.db_path, "backoff_base": 0.05},
        })
        self._store = await SqliteChunkStore.open(settings.store.db_path)
        processor = vaultcue.DocumentProcessor(
            self.vault,
            self.embedder,
            self._store,
            splitter=vaultcue.TextSplitter(settings.chunking),
            store_settings=settings.store,
        )
        self._queue = vaultcue.IngestQueue(processor, settings=settings.queue)
        self._queue.on("task-status", self._on_transition)

        self._queue.start()
        await self._submit_work()
        await self._monitor()

        # Cleanup
        await self.cleanup()

    def _on_transition(self, event: TaskEvent) -> None:
        kind = event.kind.value
        if event.previous is None:
            self.on_event("queued", event.task_id, kind, "")
        elif event.status is TaskStatus.PROCESSING:
            self.on_event("started", event.task_id, kind, "")
        elif event.status is TaskStatus.COMPLETED:
            self.on_event("completed", event.task_id, kind, "")
        elif event.status is TaskStatus.FAILED:
            self.on_event("failed", event.task_id, kind, event.reason)
        elif event.status is TaskStatus.RETRYING:
            self.on_event("retrying", event.task_id, kind, event.reason)
        elif event.status is TaskStatus.CANCELLED:
            self.on_event("cancelled", event.task_id, kind, event.reason)

    async def _submit_work(self) -> None:
        """Submit documents, then churn some of them with updates and deletes."""
        for i in range(self.config.count):
            if not self._running:
                break

            doc_id = f"notes/doc_{i:04d}.md"
            self.vault.documents[doc_id] = make_document(self.rng, self.config.paragraphs)
            await self._submit(self._index_task(doc_id, TaskKind.CREATE))

            if self.rng.random() < self.config.churn:
                if self.rng.random() < 0.5:
                    self.vault.documents[doc_id] = make_document(self.rng, self.config.paragraphs)
                    await self._submit(self._index_task(doc_id, TaskKind.UPDATE))
                else:
                    await self._submit(Task(id=doc_id, kind=TaskKind.DELETE, metadata={"path": doc_id}))

            # Rate-limited submission
            if self.config.submit_rate:
                await asyncio.sleep(1.0 / self.config.submit_rate)

            # Check duration limit during submission
            if self.config.duration and self._elapsed >= self.config.duration:
                break

    def _index_task(self, doc_id: str, kind: TaskKind) -> Task:
        meta = extract_metadata(doc_id, self.vault.documents[doc_id])
        return Task(id=doc_id, kind=kind, metadata=meta.to_dict())

    async def _submit(self, task: Task) -> None:
        while True:
            try:
                await self._queue.submit(task)
            except QueueFull:
                # Backpressure: wait for the queue to drain a little
                self.state.backpressure = True
                await asyncio.sleep(0.05)
                continue
            self.state.backpressure = False
            self.state.submitted += 1
            return

    async def _monitor(self) -> None:
        """Monitor until all work completes or duration exceeded."""
        while self._running:
            self._update_state()

            if self.state.queued == 0 and self.state.running == 0 and self.state.retrying == 0:
                break

            if self.config.duration and self._elapsed >= self.config.duration:
                break

            await asyncio.sleep(0.05)

        self._update_state()

    def _update_state(self) -> None:
        """Update simulation state from the queue."""
        if not self._queue:
            return

        self.state.elapsed = self._elapsed
        stats = self._queue.get_stats()
        self.state.queued = stats.by_status[TaskStatus.PENDING.value]
        self.state.running = stats.by_status[TaskStatus.PROCESSING.value]
        self.state.completed = stats.by_status[TaskStatus.COMPLETED.value]
        self.state.failed = stats.failed_count
        self.state.retrying = stats.retrying_count
        self.state.cancelled = stats.by_status[TaskStatus.CANCELLED.value]
        self.state.avg_processing_ms = stats.avg_processing_time_ms
        self.state.embed_calls = self.embedder.calls
        self.state.error_log = len(self._queue.errors)

    def debug_blocked(self) -> list[dict]:
        if not self._queue:
            return []
        return self._queue.debug_blocked()

    @property
    def _elapsed(self) -> float:
        """Elapsed time since start."""
        return time.time() - self.state.start_time

    def stop(self) -> None:
        """Request simulation stop."""
        self._running = False

    async def cleanup(self) -> None:
        """Clean up resources. Call after interrupt or completion."""
        if self._queue:
            await self._queue.stop()
            self._queue = None
        if self._store:
            await self._store.close()
            self._store = None
        self._running = False
