"""Cooperative cancellation."""

from __future__ import annotations

from vaultcue.errors import TaskCancelled


class CancellationToken:
    """
    Handed to a task handler with every dispatch.

    The queue calls ``cancel()``; the handler calls ``check()`` at its
    checkpoints and stops when it raises. Nothing is interrupted forcibly.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "") -> None:
        self._cancelled = True
        self.reason = reason

    def check(self) -> None:
        """Raise ``TaskCancelled`` if the task has been cancelled."""
        if self._cancelled:
            raise TaskCancelled(self.task_id)
