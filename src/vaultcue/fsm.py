"""Task lifecycle state machine.

All status changes go through ``transition()``. Allowed transitions are keyed
by ``(current_status, event) -> next_status``; anything missing from the table
is illegal and raises ``InvalidTaskState``.
"""

from __future__ import annotations

import time
from enum import Enum

from vaultcue.errors import InvalidTaskState
from vaultcue.models import Task, TaskStatus


class TaskEventType(str, Enum):
    DISPATCH = "dispatch"
    SUCCEED = "succeed"
    FAIL = "fail"
    RETRY = "retry"
    READMIT = "readmit"
    CANCEL = "cancel"
    SUPERSEDE = "supersede"


_S = TaskStatus
_E = TaskEventType

TRANSITIONS: dict[tuple[TaskStatus, TaskEventType], TaskStatus] = {
    (_S.PENDING, _E.DISPATCH): _S.PROCESSING,
    (_S.PENDING, _E.SUPERSEDE): _S.CANCELLED,
    (_S.PENDING, _E.CANCEL): _S.CANCELLED,
    (_S.PROCESSING, _E.SUCCEED): _S.COMPLETED,
    (_S.PROCESSING, _E.FAIL): _S.FAILED,
    (_S.PROCESSING, _E.RETRY): _S.RETRYING,
    (_S.PROCESSING, _E.CANCEL): _S.CANCELLED,
    (_S.RETRYING, _E.READMIT): _S.PENDING,
    (_S.RETRYING, _E.SUPERSEDE): _S.CANCELLED,
    (_S.RETRYING, _E.CANCEL): _S.CANCELLED,
}


_KEEPS_UPDATED_AT = frozenset({TaskEventType.RETRY, TaskEventType.READMIT})


def next_status(status: TaskStatus, event: TaskEventType) -> TaskStatus:
    """Look up the status reached from ``status`` on ``event``."""
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTaskState(
            f"Illegal transition: {status.value} --{event.value}-->"
        ) from None


def can_transition(status: TaskStatus, event: TaskEventType) -> bool:
    return (status, event) in TRANSITIONS


def transition(task: Task, event: TaskEventType, now: float | None = None) -> TaskStatus:
    """Apply ``event`` to ``task`` and return its previous status.

    Updates ``status`` and ``updated_at``; dispatch also stamps
    ``started_at`` and terminal states stamp ``completed_at``. Retry and
    re-admission keep ``updated_at``, so a retried task never outranks a newer
    submission for the same document.
    """
    previous = task.status
    task.status = next_status(previous, event)
    now = time.monotonic() if now is None else now
    if event not in _KEEPS_UPDATED_AT:
        task.updated_at = now
    if event is TaskEventType.DISPATCH:
        task.started_at = now
    if task.status.is_terminal:
        task.completed_at = now
    return previous
