"""Exception types for vaultcue."""

from __future__ import annotations


class VaultcueError(Exception):
    """Base class for all vaultcue errors.

    Every error carries a short machine-readable ``code`` that ends up in
    ``TaskError.code`` when a task fails terminally.
    """

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class QueueFull(VaultcueError):
    """Admission rejected: the pending set is at capacity."""

    code = "QUEUE_FULL"

    def __init__(self, capacity: int) -> None:
        super().__init__(f"Queue is full ({capacity} pending tasks)")
        self.capacity = capacity


class ChunkingError(VaultcueError, ValueError):
    """Invalid chunker settings or malformed input text."""

    code = "CHUNKING_ERROR"


class EmbeddingError(VaultcueError):
    """The embedding provider failed."""

    code = "EMBEDDING_ERROR"


class StoreError(VaultcueError):
    """Upsert or delete failed, or the store did not verify."""

    code = "STORE_ERROR"


class TaskCancelled(VaultcueError):
    """Raised at a checkpoint once a task has been cancelled."""

    code = "TASK_CANCELLED"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} was cancelled")
        self.task_id = task_id


class MaxRetriesExceeded(VaultcueError):
    """A task failed on every allowed attempt."""

    code = "MAX_RETRIES_EXCEEDED"

    def __init__(self, task_id: str, attempts: int) -> None:
        super().__init__(f"Task {task_id} failed after {attempts} attempts")
        self.task_id = task_id
        self.attempts = attempts


class TaskNotFound(VaultcueError, KeyError):
    """No task with the given id is known to the queue."""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return self.args[0] if self.args else ""


class InvalidTaskState(VaultcueError):
    """An operation is not allowed in the task's current state."""

    code = "INVALID_TASK_STATE"
