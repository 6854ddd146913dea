"""Interfaces of the collaborators vaultcue calls but does not implement.

Every method may be a plain function or a coroutine function.
"""

from __future__ import annotations

from typing import Any, Awaitable, Protocol, Sequence, Union

from vaultcue.models import ChunkRecord, ProgressUpdate

MaybeAwaitable = Union[Any, Awaitable[Any]]


class ContentSource(Protocol):
    def read_content(self, document_id: str) -> MaybeAwaitable:
        """Return the document text."""
        ...


class Embedder(Protocol):
    def embed(self, text: str) -> MaybeAwaitable:
        """Return the embedding vector, or raise ``EmbeddingError``."""
        ...


class ChunkStore(Protocol):
    def upsert_chunks(self, records: Sequence[ChunkRecord]) -> MaybeAwaitable:
        ...

    def delete_chunks(self, document_id: str) -> MaybeAwaitable:
        ...

    def count_chunks(self, document_id: str) -> MaybeAwaitable:
        ...

    def update_document_status(self, document_id: str, metadata: dict[str, Any]) -> MaybeAwaitable:
        ...


class ProgressReporter(Protocol):
    def report_progress(self, update: ProgressUpdate) -> None:
        ...


class Notifier(Protocol):
    def notify(self, message: str, level: str) -> None:
        ...
