"""Tests for the document processor (task bodies)."""

import pytest

from vaultcue import (
    CancellationToken,
    ChunkingError,
    ChunkSettings,
    DocumentProcessor,
    EmbeddingError,
    StoreError,
    StoreSettings,
    Task,
    TaskCancelled,
    TaskKind,
    TextSplitter,
)

from conftest import FakeEmbedder, FakeStore, no_sleep

LONG_TEXT = "\n\n".join("Paragraph %d. " % i + "lorem ipsum " * 8 for i in range(5))


def make_processor(source, embedder, store, reporter=None, **kwargs):
    return DocumentProcessor(
        source,
        embedder,
        store,
        splitter=TextSplitter(ChunkSettings(chunk_size=120, chunk_overlap=20, min_chunk_size=0)),
        reporter=reporter,
        sleep=kwargs.pop("sleep", no_sleep),
        **kwargs,
    )


class TestIndexing:
    """Tests for CREATE and UPDATE tasks."""

    async def test_create_embeds_and_stores_chunks(self, source, embedder, store):
        source.documents["a.md"] = LONG_TEXT
        processor = make_processor(source, embedder, store)
        task = Task(id="a.md", kind=TaskKind.CREATE, metadata={"path": "a.md"})

        result = await processor(task, CancellationToken(task.id))

        records = store.chunks["a.md"]
        assert result == {"chunks": len(records)}
        assert len(records) == 5
        assert len(embedder.calls) == 5
        assert [r.chunk_index for r in records] == list(range(5))
        assert records[0].metadata["path"] == "a.md"
        assert records[0].embedding == [float(len(records[0].content)), 0.5, 0.25]

    async def test_payload_content_skips_source(self, source, embedder, store):
        processor = make_processor(source, embedder, store)
        task = Task(id="a.md", kind=TaskKind.UPDATE, payload={"content": "Inline text."})

        await processor(task, CancellationToken(task.id))

        assert source.reads == []
        assert store.chunks["a.md"][0].content == "Inline text."

    async def test_empty_document_updates_status_only(self, source, embedder, store):
        source.documents["empty.md"] = "   \n\n  "
        processor = make_processor(source, embedder, store)
        task = Task(id="empty.md", kind=TaskKind.CREATE, metadata={"path": "empty.md"})

        result = await processor(task, CancellationToken(task.id))

        assert result == {"chunks": 0}
        assert embedder.calls == []
        assert store.upsert_calls == 0
        assert store.statuses["empty.md"] == {"path": "empty.md"}

    async def test_malformed_content(self, source, embedder, store):
        source.documents["bin.md"] = b"\x00\x01"
        processor = make_processor(source, embedder, store)
        task = Task(id="bin.md", kind=TaskKind.CREATE)

        with pytest.raises(ChunkingError):
            await processor(task, CancellationToken(task.id))

    async def test_embedding_failure_is_wrapped(self, source, store):
        source.documents["a.md"] = "Some text."
        processor = make_processor(source, FakeEmbedder(fail_times=1), store)
        task = Task(id="a.md", kind=TaskKind.CREATE)

        with pytest.raises(EmbeddingError) as exc_info:
            await processor(task, CancellationToken(task.id))

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "a.md" not in store.chunks

    async def test_progress_steps(self, source, embedder, store, reporter):
        source.documents["a.md"] = LONG_TEXT
        processor = make_processor(source, embedder, store, reporter=reporter)
        task = Task(id="a.md", kind=TaskKind.CREATE)

        await processor(task, CancellationToken(task.id))

        percents = [u.percent for u in reporter.updates]
        assert percents[:3] == [10, 20, 40]
        assert percents[-2:] == [70, 100]
        assert percents == sorted(percents)
        assert reporter.updates[-1].step == "Processing completed"
        assert all(u.step_count == 5 for u in reporter.updates)


class TestStoreRetry:
    """Tests for the store's own bounded retry."""

    async def test_upsert_retries_with_backoff(self, source, embedder):
        delays = []

        async def record_sleep(delay):
            delays.append(delay)

        source.documents["a.md"] = "Short text."
        store = FakeStore(upsert_failures=2)
        processor = make_processor(
            source, embedder, store,
            sleep=record_sleep,
            store_settings=StoreSettings(max_attempts=3, backoff_base=0.5),
        )
        task = Task(id="a.md", kind=TaskKind.CREATE)

        await processor(task, CancellationToken(task.id))

        assert store.upsert_calls == 3
        assert delays == [1.0, 2.0]
        assert "a.md" in store.chunks

    async def test_upsert_gives_up(self, source, embedder):
        source.documents["a.md"] = "Short text."
        store = FakeStore(upsert_failures=5)
        processor = make_processor(source, embedder, store)
        task = Task(id="a.md", kind=TaskKind.CREATE)

        with pytest.raises(StoreError):
            await processor(task, CancellationToken(task.id))

        assert store.upsert_calls == 3


class TestDelete:
    """Tests for DELETE tasks."""

    async def test_delete_removes_chunks(self, source, embedder, store):
        source.documents["a.md"] = LONG_TEXT
        processor = make_processor(source, embedder, store)
        await processor(Task(id="a.md", kind=TaskKind.CREATE), CancellationToken("a.md"))

        result = await processor(Task(id="a.md", kind=TaskKind.DELETE), CancellationToken("a.md"))

        assert result == {"deleted": 5}
        assert await store.count_chunks("a.md") == 0

    async def test_delete_of_unknown_document(self, source, embedder, store):
        processor = make_processor(source, embedder, store)

        result = await processor(Task(id="x.md", kind=TaskKind.DELETE), CancellationToken("x.md"))

        assert result == {"deleted": 0}

    async def test_delete_retries_transport_errors(self, source, embedder):
        store = FakeStore(delete_failures=1)
        processor = make_processor(source, embedder, store)

        await processor(Task(id="a.md", kind=TaskKind.DELETE), CancellationToken("a.md"))

        assert store.delete_calls == 2

    async def test_delete_verification(self, source, embedder):
        """Chunks surviving a delete make the task fail."""
        store = FakeStore(leaky_delete=True)
        source.documents["a.md"] = "Short text."
        processor = make_processor(source, embedder, store)
        await processor(Task(id="a.md", kind=TaskKind.CREATE), CancellationToken("a.md"))

        with pytest.raises(StoreError) as exc_info:
            await processor(Task(id="a.md", kind=TaskKind.DELETE), CancellationToken("a.md"))

        assert exc_info.value.code == "DELETE_VERIFICATION_FAILED"
        assert store.delete_calls == 3


class TestCancellation:
    """Tests for cancellation checkpoints."""

    async def test_cancelled_before_start(self, source, embedder, store):
        source.documents["a.md"] = LONG_TEXT
        processor = make_processor(source, embedder, store)
        token = CancellationToken("a.md")
        token.cancel("test")

        with pytest.raises(TaskCancelled):
            await processor(Task(id="a.md", kind=TaskKind.CREATE), token)

        assert source.reads == []

    async def test_cancelled_between_chunks(self, source, store):
        token = CancellationToken("a.md")

        class CancellingEmbedder(FakeEmbedder):
            async def embed(self, text):
                vector = await super().embed(text)
                if len(self.calls) == 2:
                    token.cancel("preempted")
                return vector

        embedder = CancellingEmbedder()
        source.documents["a.md"] = LONG_TEXT
        processor = make_processor(source, embedder, store)

        with pytest.raises(TaskCancelled):
            await processor(Task(id="a.md", kind=TaskKind.CREATE), token)

        assert len(embedder.calls) == 2
        assert store.upsert_calls == 0
