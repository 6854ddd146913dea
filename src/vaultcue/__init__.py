"""vaultcue - Ordered, retried, collision-safe document ingestion."""

from vaultcue.cancellation import CancellationToken
from vaultcue.chunker import TextSplitter, split_text
from vaultcue.errors import (
    ChunkingError,
    EmbeddingError,
    InvalidTaskState,
    MaxRetriesExceeded,
    QueueFull,
    StoreError,
    TaskCancelled,
    TaskNotFound,
    VaultcueError,
)
from vaultcue.executor import DocumentProcessor
from vaultcue.metadata import extract_metadata
from vaultcue.models import (
    Chunk,
    ChunkRecord,
    DocumentMetadata,
    ProgressUpdate,
    QueueStats,
    Task,
    TaskError,
    TaskEvent,
    TaskKind,
    TaskStatus,
)
from vaultcue.queue import IngestQueue
from vaultcue.settings import (
    ChunkSettings,
    DebugSettings,
    QueueSettings,
    Settings,
    StoreSettings,
    validate_settings,
)

__version__ = "0.1.0"
__all__ = [
    "IngestQueue",
    "DocumentProcessor",
    "TextSplitter",
    "split_text",
    "extract_metadata",
    "CancellationToken",
    "Task",
    "TaskKind",
    "TaskStatus",
    "TaskError",
    "TaskEvent",
    "Chunk",
    "ChunkRecord",
    "DocumentMetadata",
    "ProgressUpdate",
    "QueueStats",
    "Settings",
    "ChunkSettings",
    "QueueSettings",
    "StoreSettings",
    "DebugSettings",
    "validate_settings",
    "VaultcueError",
    "QueueFull",
    "ChunkingError",
    "EmbeddingError",
    "StoreError",
    "TaskCancelled",
    "MaxRetriesExceeded",
    "TaskNotFound",
    "InvalidTaskState",
]
