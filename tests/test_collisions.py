"""Tests for collision resolution, admission and dispatch order."""

from vaultcue import Task, TaskKind, TaskStatus
from vaultcue.collisions import (
    PREEMPT_PRIORITY,
    AdmissionDecision,
    admit,
    order,
    resolve,
)


def make(task_id, kind, at, seq, priority=0, status=TaskStatus.PENDING):
    return Task(id=task_id, kind=kind, created_at=at, seq=seq, priority=priority, status=status)


class TestResolve:
    """Tests for reducing pending tasks to one per document."""

    def test_delete_beats_create(self):
        create = make("a.md", TaskKind.CREATE, 1.0, 1, priority=1)
        delete = make("a.md", TaskKind.DELETE, 2.0, 2)

        resolution = resolve([create, delete])

        assert resolution.kept == [delete]
        assert resolution.superseded == [create]

    def test_delete_beats_newer_update(self):
        delete = make("a.md", TaskKind.DELETE, 1.0, 1)
        update = make("a.md", TaskKind.UPDATE, 5.0, 2)

        resolution = resolve([delete, update])

        assert resolution.kept == [delete]

    def test_newest_update_wins(self):
        old = make("a.md", TaskKind.UPDATE, 1.0, 1)
        new = make("a.md", TaskKind.UPDATE, 2.0, 2)
        create = make("a.md", TaskKind.CREATE, 1.5, 3)

        resolution = resolve([old, new, create])

        assert resolution.kept == [new]
        assert set(map(id, resolution.superseded)) == {id(old), id(create)}

    def test_tie_goes_to_later_submission(self):
        first = make("a.md", TaskKind.UPDATE, 1.0, 1)
        second = make("a.md", TaskKind.UPDATE, 1.0, 2)

        assert resolve([second, first]).kept == [second]

    def test_distinct_documents_untouched(self):
        tasks = [make("%d.md" % i, TaskKind.CREATE, float(i), i) for i in range(5)]

        resolution = resolve(tasks)

        assert resolution.kept == tasks
        assert resolution.superseded == []

    def test_one_task_per_id_after_resolve(self):
        tasks = [
            make("a.md", TaskKind.CREATE, 1.0, 1),
            make("b.md", TaskKind.CREATE, 1.0, 2),
            make("a.md", TaskKind.UPDATE, 2.0, 3),
            make("b.md", TaskKind.DELETE, 2.0, 4),
            make("a.md", TaskKind.UPDATE, 3.0, 5),
        ]

        kept = resolve(tasks).kept

        assert sorted(t.id for t in kept) == ["a.md", "b.md"]
        assert {t.id: t.seq for t in kept} == {"a.md": 5, "b.md": 4}


class TestAdmit:
    """Tests for admission of new submissions."""

    def test_create_rejected_behind_delete(self):
        delete = make("a.md", TaskKind.DELETE, 1.0, 1)
        create = make("a.md", TaskKind.CREATE, 2.0, 2)

        admission = admit(create, [delete], [])

        assert admission.decision is AdmissionDecision.REJECT

    def test_create_rejected_behind_retrying_delete(self):
        delete = make("a.md", TaskKind.DELETE, 1.0, 1, status=TaskStatus.RETRYING)
        update = make("a.md", TaskKind.UPDATE, 2.0, 2)

        assert admit(update, [delete], []).decision is AdmissionDecision.REJECT

    def test_update_accepted_for_other_document(self):
        delete = make("a.md", TaskKind.DELETE, 1.0, 1)
        update = make("b.md", TaskKind.UPDATE, 2.0, 2)

        assert admit(update, [delete], []).decision is AdmissionDecision.ACCEPT

    def test_delete_preempts_running_update(self):
        running = make("a.md", TaskKind.UPDATE, 1.0, 1, status=TaskStatus.PROCESSING)
        delete = make("a.md", TaskKind.DELETE, 2.0, 2)

        admission = admit(delete, [], [running])

        assert admission.decision is AdmissionDecision.PREEMPT
        assert admission.preempted == [running]

    def test_delete_does_not_preempt_running_delete(self):
        running = make("a.md", TaskKind.DELETE, 1.0, 1, status=TaskStatus.PROCESSING)
        delete = make("a.md", TaskKind.DELETE, 2.0, 2)

        assert admit(delete, [], [running]).decision is AdmissionDecision.ACCEPT

    def test_preempt_priority_is_high(self):
        assert PREEMPT_PRIORITY >= 10


class TestOrder:
    """Tests for dispatch order."""

    def test_delete_first_then_priority_then_age(self):
        low_old = make("a.md", TaskKind.CREATE, 1.0, 1, priority=0)
        high_new = make("b.md", TaskKind.UPDATE, 3.0, 2, priority=5)
        low_new = make("c.md", TaskKind.CREATE, 2.0, 3, priority=0)
        delete = make("d.md", TaskKind.DELETE, 4.0, 4, priority=0)

        assert order([low_old, high_new, low_new, delete]) == [delete, high_new, low_old, low_new]

    def test_seq_breaks_ties(self):
        first = make("a.md", TaskKind.CREATE, 1.0, 1)
        second = make("b.md", TaskKind.CREATE, 1.0, 2)

        assert order([second, first]) == [first, second]
