"""Collision resolution between tasks for the same document.

Pure functions over task lists; the queue applies the outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from vaultcue.models import Task, TaskStatus

# Minimum priority of a DELETE that preempts a running task.
PREEMPT_PRIORITY = 10


@dataclass
class Resolution:
    """Result of a resolution pass."""

    kept: list[Task] = field(default_factory=list)
    superseded: list[Task] = field(default_factory=list)


class AdmissionDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"  # Stale create/update behind a queued delete
    PREEMPT = "preempt"  # Delete that cancels running work for the document


@dataclass
class Admission:
    decision: AdmissionDecision
    preempted: list[Task] = field(default_factory=list)
    reason: str = ""


def resolve(pending: Iterable[Task]) -> Resolution:
    """
    Reduce ``pending`` to at most one task per document id.

    A DELETE beats everything else for its id; otherwise the most recently
    updated task wins. Ties go to the later submission. Input order of the
    kept tasks is preserved.
    """
    tasks = list(pending)
    winners: dict[str, Task] = {}
    for task in tasks:
        current = winners.get(task.id)
        if current is None or _beats(task, current):
            winners[task.id] = task

    result = Resolution()
    for task in tasks:
        if winners[task.id] is task:
            result.kept.append(task)
        else:
            result.superseded.append(task)
    return result


def _beats(challenger: Task, current: Task) -> bool:
    if challenger.is_delete != current.is_delete:
        return challenger.is_delete
    return (challenger.updated_at, challenger.seq) > (current.updated_at, current.seq)


def admit(task: Task, pending: Iterable[Task], in_flight: Iterable[Task]) -> Admission:
    """
    Decide whether a newly submitted task may enter the pending set.

    - A CREATE/UPDATE is rejected while a DELETE for the same id is queued
      (pending or waiting out a retry backoff).
    - A DELETE preempts any non-DELETE task for the same id that is running.
    """
    if not task.is_delete:
        for other in pending:
            if other.id == task.id and other.is_delete:
                return Admission(
                    AdmissionDecision.REJECT,
                    reason=f"delete already queued for {task.id}",
                )
        return Admission(AdmissionDecision.ACCEPT)

    running = [
        other for other in in_flight
        if other.id == task.id
        and not other.is_delete
        and other.status is TaskStatus.PROCESSING
    ]
    if running:
        return Admission(
            AdmissionDecision.PREEMPT,
            preempted=running,
            reason=f"delete preempts running {running[0].kind.value} for {task.id}",
        )
    return Admission(AdmissionDecision.ACCEPT)


def order_key(task: Task) -> tuple[bool, int, float, int]:
    """DELETE first, then higher priority, then earlier creation."""
    return (not task.is_delete, -task.priority, task.created_at, task.seq)


def order(pending: Iterable[Task]) -> list[Task]:
    """Return ``pending`` in dispatch order."""
    return sorted(pending, key=order_key)
