"""Tests for the task lifecycle state machine."""

import pytest

from vaultcue import InvalidTaskState, Task, TaskKind, TaskStatus
from vaultcue.fsm import TRANSITIONS, TaskEventType, can_transition, next_status, transition


class TestTransitionTable:
    """The table is the only source of legal moves."""

    def test_every_pair_is_legal_or_raises(self):
        for status in TaskStatus:
            for event in TaskEventType:
                if (status, event) in TRANSITIONS:
                    assert next_status(status, event) is TRANSITIONS[(status, event)]
                else:
                    assert not can_transition(status, event)
                    with pytest.raises(InvalidTaskState):
                        next_status(status, event)

    @pytest.mark.parametrize("status", [
        TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED,
    ])
    def test_terminal_states_have_no_exits(self, status):
        assert status.is_terminal
        assert not any(can_transition(status, event) for event in TaskEventType)

    def test_retry_path(self):
        assert next_status(TaskStatus.PROCESSING, TaskEventType.RETRY) is TaskStatus.RETRYING
        assert next_status(TaskStatus.RETRYING, TaskEventType.READMIT) is TaskStatus.PENDING

    def test_superseded_tasks_are_cancelled_never_failed(self):
        for status, event in TRANSITIONS:
            if event is TaskEventType.SUPERSEDE:
                assert TRANSITIONS[(status, event)] is TaskStatus.CANCELLED

    def test_completed_only_from_processing(self):
        sources = {s for (s, _), target in TRANSITIONS.items() if target is TaskStatus.COMPLETED}
        assert sources == {TaskStatus.PROCESSING}


class TestTransition:
    """Tests for applying transitions to tasks."""

    def test_dispatch_stamps_started_at(self):
        task = Task(id="a.md", kind=TaskKind.CREATE, created_at=1.0)

        previous = transition(task, TaskEventType.DISPATCH, now=5.0)

        assert previous is TaskStatus.PENDING
        assert task.status is TaskStatus.PROCESSING
        assert task.started_at == 5.0
        assert task.updated_at == 5.0
        assert task.completed_at is None

    def test_terminal_stamps_completed_at(self):
        task = Task(id="a.md", kind=TaskKind.CREATE, created_at=1.0)
        transition(task, TaskEventType.DISPATCH, now=2.0)

        transition(task, TaskEventType.SUCCEED, now=2.5)

        assert task.status is TaskStatus.COMPLETED
        assert task.completed_at == 2.5
        assert task.processing_time == pytest.approx(0.5)

    def test_retry_and_readmit_keep_updated_at(self):
        task = Task(id="a.md", kind=TaskKind.UPDATE, created_at=1.0)
        transition(task, TaskEventType.DISPATCH, now=2.0)

        transition(task, TaskEventType.RETRY, now=3.0)
        assert task.status is TaskStatus.RETRYING
        assert task.updated_at == 2.0

        transition(task, TaskEventType.READMIT, now=9.0)

        assert task.status is TaskStatus.PENDING
        assert task.updated_at == 2.0

    def test_illegal_transition_leaves_task_unchanged(self):
        task = Task(id="a.md", kind=TaskKind.CREATE, created_at=1.0)

        with pytest.raises(InvalidTaskState):
            transition(task, TaskEventType.SUCCEED, now=2.0)

        assert task.status is TaskStatus.PENDING
        assert task.updated_at == 1.0
