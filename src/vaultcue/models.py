"""Core data models for vaultcue."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class TaskKind(str, Enum):
    """What a task does to a document's indexed representation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TaskStatus(str, Enum):
    """Possible states for a task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


@dataclass
class TaskError:
    """Error recorded on a task that failed terminally."""

    message: str
    code: str = "UNKNOWN_ERROR"


@dataclass
class Task:
    """One unit of ingestion work for a single document.

    ``id`` is the document identity: the queue keeps at most one pending
    task per id.
    """

    id: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 0
    retry_count: int = 0
    max_retries: int | None = None  # None = use the queue default
    created_at: float = field(default_factory=time.monotonic)
    updated_at: float = 0.0
    started_at: float | None = None
    completed_at: float | None = None
    error: TaskError | None = None
    result: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] | None = None
    not_before: float | None = None  # Earliest re-admission after a failure
    seq: int = field(default=0, repr=False)  # Submission order, breaks ties

    def __post_init__(self) -> None:
        self.kind = TaskKind(self.kind)
        self.status = TaskStatus(self.status)
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def is_delete(self) -> bool:
        return self.kind is TaskKind.DELETE

    @property
    def processing_time(self) -> float | None:
        """Seconds between dispatch and completion, if both happened."""
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at


@dataclass
class DocumentMetadata:
    """Attributes of a source document carried into chunk records."""

    path: str
    size: int = 0
    created: float | None = None
    modified: float | None = None
    tags: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Chunk:
    """A bounded-size text segment produced by the chunker."""

    index: int
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    overlap: int = 0  # Leading characters copied from the previous chunk

    @property
    def body(self) -> str:
        """Content without the overlap prefix."""
        return self.content[self.overlap:]


@dataclass
class ChunkRecord:
    """A chunk with its embedding, as written to the store."""

    document_id: str
    chunk_index: int
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] = field(default_factory=list)


@dataclass
class ProgressUpdate:
    """Progress of a single task, sent to the progress reporter."""

    task_id: str
    percent: int
    step: str
    step_index: int = 1
    step_count: int = 1


@dataclass
class TaskEvent:
    """A lifecycle transition of a task."""

    task_id: str
    kind: TaskKind
    previous: TaskStatus | None
    status: TaskStatus
    at: float
    reason: str = ""


@dataclass
class QueueStatusEvent:
    """Queue-level status change (start, stop)."""

    status: str  # "processing" or "stopped"
    queue_size: int
    processing_count: int


@dataclass
class QueueStats:
    """Snapshot returned by ``IngestQueue.get_stats()``."""

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_kind: dict[str, int] = field(default_factory=dict)
    avg_processing_time_ms: float = 0.0
    failed_count: int = 0
    retrying_count: int = 0
    completed_last_hour: int = 0
