"""The ingestion queue: admission, ordering, dispatch and retry."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Union

from vaultcue import collisions
from vaultcue.cancellation import CancellationToken
from vaultcue.error_log import ErrorContext, ErrorHandler
from vaultcue.errors import (
    ChunkingError,
    InvalidTaskState,
    MaxRetriesExceeded,
    QueueFull,
    StoreError,
    TaskCancelled,
    TaskNotFound,
)
from vaultcue.events import QUEUE_STATUS, TASK_PROGRESS, TASK_STATUS, EventEmitter
from vaultcue.executor import maybe_await
from vaultcue.fsm import TaskEventType, transition
from vaultcue.models import (
    ProgressUpdate,
    QueueStats,
    QueueStatusEvent,
    Task,
    TaskError,
    TaskEvent,
    TaskKind,
    TaskStatus,
)
from vaultcue.protocols import Notifier, ProgressReporter
from vaultcue.settings import QueueSettings

logger = logging.getLogger(__name__)

Handler = Callable[[Task, CancellationToken], Union[Any, Awaitable[Any]]]


class IngestQueue:
    """
    Schedules document ingestion tasks under a concurrency limit.

    The queue decides WHEN and IN WHAT ORDER tasks run. The handler decides
    WHAT they do (usually a ``DocumentProcessor``).

    All queue state lives on the event loop that called ``start()``; the
    dispatch loop is woken on submission, cancellation and completion, with a
    periodic tick as a fallback.

    Example:
        queue = IngestQueue(DocumentProcessor(source, embedder, store))
        queue.start()
        await queue.submit(Task(id="notes/a.md", kind=TaskKind.CREATE))
        await queue.join()
        await queue.stop()
    """

    def __init__(
        self,
        handler: Handler | None = None,
        *,
        settings: QueueSettings | None = None,
        reporter: ProgressReporter | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or QueueSettings()

        self._handler = handler
        self.reporter = reporter
        self._clock = clock

        self.events = EventEmitter()
        self.errors = ErrorHandler(notifier)

        # In-memory task storage
        self._pending: list[Task] = []                  # PENDING and RETRYING
        self._in_flight: dict[int, Task] = {}           # seq -> dispatched task
        self._tokens: dict[int, CancellationToken] = {}
        self._history: deque[Task] = deque(maxlen=self.settings.history_size)
        self._seq = itertools.count(1)

        # Dispatch loop state
        self._running = False
        self._wake: asyncio.Event | None = None
        self._loop_task: asyncio.Task | None = None
        self._work_tasks: dict[int, asyncio.Task] = {}

    # --- Handler Registration ---

    def handler(self, func: Handler) -> Handler:
        """
        Decorator to register the task handler.

        Called with ``(task, token)``; may be sync or async.

        Example:
            @queue.handler
            async def process(task, token):
                token.check()
                ...
        """
        self._handler = func
        return func

    def on(self, event: str, callback: Callable | None = None):
        """Subscribe to ``task-status``, ``task-progress`` or ``queue-status``."""
        return self.events.on(event, callback)

    def stream(self, *events: str):
        """Async iterator over lifecycle events (``task-status`` by default)."""
        return self.events.stream(*(events or (TASK_STATUS,)))

    # --- Lifecycle ---

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Start the dispatch loop.

        Non-blocking - runs as a background asyncio task. Calling it again
        while running is a no-op.
        """
        if self._running:
            return
        if self._handler is None:
            raise RuntimeError("No handler registered")

        self._running = True
        self._wake = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._loop_task = loop.create_task(self._run())
        self._emit_queue_status("processing")
        logger.debug("Queue started (max_concurrent=%d)", self.settings.max_concurrent)

    async def stop(self, timeout: float | None = None, wait: bool = True) -> None:
        """
        Stop the dispatch loop.

        Running tasks are not cancelled. With ``wait`` (the default) this
        returns once they finished or ``timeout`` seconds passed. Pending
        tasks stay queued for a later ``start()``.
        """
        if not self._running and self._loop_task is None:
            return
        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if wait and self._work_tasks:
            await asyncio.wait(list(self._work_tasks.values()), timeout=timeout)

        self._emit_queue_status("stopped")
        logger.debug("Queue stopped")

    async def join(self, timeout: float | None = None) -> None:
        """Wait until nothing is pending, retrying or running."""
        async def _idle() -> None:
            while self._pending or self._in_flight:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_idle(), timeout)

    async def _run(self) -> None:
        """Background loop that dispatches pending work."""
        while self._running:
            self._wake.clear()
            self._schedule()
            try:
                await asyncio.wait_for(self._wake.wait(), self._next_timeout())
            except asyncio.TimeoutError:
                pass

    def _next_timeout(self) -> float:
        timeout = self.settings.tick_interval
        now = self._clock()
        for task in self._pending:
            if task.status is TaskStatus.RETRYING and task.not_before is not None:
                timeout = min(timeout, max(0.0, task.not_before - now))
        return timeout

    def _wake_up(self) -> None:
        if self._wake is not None:
            self._wake.set()

    # --- Scheduling ---

    def _schedule(self) -> None:
        """One dispatch pass. Safe to run when nothing is eligible."""
        self._resolve()
        self._readmit_due()

        if not self._running:
            return

        busy = {t.id for t in self._in_flight.values() if t.status is TaskStatus.PROCESSING}
        for task in collisions.order(self._pending):
            if len(self._in_flight) >= self.settings.max_concurrent:
                break
            if task.status is not TaskStatus.PENDING or task.id in busy:
                continue
            self._dispatch(task)
            busy.add(task.id)

    def _resolve(self) -> None:
        resolution = collisions.resolve(self._pending)
        if not resolution.superseded:
            return
        self._pending = resolution.kept
        for task in resolution.superseded:
            self._transition(task, TaskEventType.SUPERSEDE, "superseded")
            logger.debug("Superseded %s task for %s", task.kind.value, task.id)

    def _readmit_due(self) -> None:
        now = self._clock()
        for task in self._pending:
            if task.status is TaskStatus.RETRYING and (task.not_before or 0.0) <= now:
                task.not_before = None
                self._transition(task, TaskEventType.READMIT, "backoff elapsed")

    def _dispatch(self, task: Task) -> None:
        self._pending.remove(task)
        self._transition(task, TaskEventType.DISPATCH)

        token = CancellationToken(task.id)
        self._in_flight[task.seq] = task
        self._tokens[task.seq] = token
        self._work_tasks[task.seq] = asyncio.create_task(self._execute(task, token))

    async def _execute(self, task: Task, token: CancellationToken) -> None:
        """Run the handler for one task and record the outcome."""
        self._report(task, 0, f"Starting {task.kind.value}")
        try:
            result = await maybe_await(self._handler(task, token))
        except TaskCancelled:
            self._handle_cancelled(task)
        except Exception as e:
            self._handle_failure(task, e)
        else:
            self._handle_success(task, result)
        finally:
            self._in_flight.pop(task.seq, None)
            self._tokens.pop(task.seq, None)
            self._work_tasks.pop(task.seq, None)
            self._wake_up()

    def _handle_success(self, task: Task, result: Any) -> None:
        if task.status is not TaskStatus.PROCESSING:
            # Cancelled while running, the late result is dropped
            return
        if result is not None and not isinstance(result, dict):
            result = {"result": result}
        task.result = result
        self._transition(task, TaskEventType.SUCCEED)
        self._report(task, 100, "Task completed")
        logger.info(
            "Completed %s %s in %.0fms",
            task.kind.value, task.id, (task.processing_time or 0.0) * 1000,
        )

    def _handle_cancelled(self, task: Task) -> None:
        if task.status is TaskStatus.PROCESSING:
            self._transition(task, TaskEventType.CANCEL, "cancelled")
        logger.info("Cancelled %s %s", task.kind.value, task.id)

    def _handle_failure(self, task: Task, error: Exception) -> None:
        if task.status is not TaskStatus.PROCESSING:
            return

        context = ErrorContext(
            context="IngestQueue.process_task",
            task_id=task.id,
            task_kind=task.kind.value,
            phase=type(error).__name__,
        )
        task.retry_count += 1

        # Splitting is deterministic, retrying malformed content changes nothing
        if isinstance(error, ChunkingError):
            self._fail(task, error)
            self.errors.handle_error(error, context)
            return

        if task.retry_count < task.max_retries:
            delay = self._backoff_delay(task, error)
            task.not_before = self._clock() + delay
            self._transition(task, TaskEventType.RETRY, f"retry in {delay:.2f}s")
            self._pending.append(task)
            self.errors.handle_error(error, context, level="warn")
            self._report(task, 0, f"Retry attempt {task.retry_count}")
            return

        self._fail(task, error)
        exhausted = MaxRetriesExceeded(task.id, task.retry_count)
        exhausted.__cause__ = error
        self.errors.handle_error(exhausted, context)

    def _fail(self, task: Task, error: Exception) -> None:
        task.error = TaskError(
            message=str(error) or type(error).__name__,
            code=getattr(error, "code", "UNKNOWN_ERROR"),
        )
        self._transition(task, TaskEventType.FAIL, task.error.code)
        logger.error("Failed %s %s: %s", task.kind.value, task.id, task.error.message)

    def _backoff_delay(self, task: Task, error: Exception) -> float:
        if isinstance(error, StoreError):
            return self.settings.retry_backoff_base * 2 ** task.retry_count
        return self.settings.retry_delay * task.retry_count

    def _transition(self, task: Task, event: TaskEventType, reason: str = "") -> None:
        now = self._clock()
        previous = transition(task, event, now)
        if task.status.is_terminal:
            self._history.append(task)
        self._emit(TASK_STATUS, TaskEvent(
            task_id=task.id,
            kind=task.kind,
            previous=previous,
            status=task.status,
            at=now,
            reason=reason,
        ))

    # --- Task Operations ---

    async def submit(self, task: Task) -> str:
        """
        Submit a task to the queue.

        Returns:
            The task id (the document id).

        Raises:
            QueueFull: If the pending set is at capacity.
            InvalidTaskState: If the task is not PENDING or was submitted before.
        """
        if len(self._pending) >= self.settings.capacity:
            raise QueueFull(self.settings.capacity)
        if task.status is not TaskStatus.PENDING:
            raise InvalidTaskState(f"Cannot submit a {task.status.value} task")
        if task.seq:
            raise InvalidTaskState(f"Task {task.id} was already submitted")

        # Ordering compares timestamps from the queue's clock only
        now = self._clock()
        if task.updated_at == task.created_at:
            task.updated_at = now
        task.created_at = now
        task.seq = next(self._seq)
        if task.max_retries is None:
            task.max_retries = self.settings.max_retries

        admission = collisions.admit(task, self._pending, self._in_flight.values())
        if admission.decision is collisions.AdmissionDecision.REJECT:
            logger.warning("Rejected %s for %s: %s", task.kind.value, task.id, admission.reason)
            return task.id

        if admission.decision is collisions.AdmissionDecision.PREEMPT:
            for running in admission.preempted:
                self._cancel_running(running, admission.reason)
            task.priority = max(task.priority, collisions.PREEMPT_PRIORITY)

        self._pending.append(task)
        self._emit(TASK_STATUS, TaskEvent(
            task_id=task.id,
            kind=task.kind,
            previous=None,
            status=task.status,
            at=task.created_at,
            reason="submitted",
        ))
        self._report(task, 0, "Task queued")
        self._resolve()
        self._wake_up()
        return task.id

    async def cancel(self, task_id: str) -> None:
        """
        Cancel every non-terminal task for ``task_id``.

        Pending tasks are dropped right away. Running tasks are marked
        CANCELLED and stop at their handler's next checkpoint.

        Raises:
            TaskNotFound: If no task with this id is known.
            InvalidTaskState: If the task already finished.
        """
        pending = [t for t in self._pending if t.id == task_id]
        running = [
            t for t in self._in_flight.values()
            if t.id == task_id and t.status is TaskStatus.PROCESSING
        ]

        if not pending and not running:
            for task in reversed(self._history):
                if task.id == task_id:
                    raise InvalidTaskState(f"Task {task_id} is already {task.status.value}")
            raise TaskNotFound(task_id)

        for task in pending:
            self._pending.remove(task)
            self._transition(task, TaskEventType.CANCEL, "cancelled by caller")
        for task in running:
            self._cancel_running(task, "cancelled by caller")
        self._wake_up()

    def _cancel_running(self, task: Task, reason: str) -> None:
        token = self._tokens.get(task.seq)
        if token is not None:
            token.cancel(reason)
        self._transition(task, TaskEventType.CANCEL, reason)

    async def get(self, task_id: str) -> Task | None:
        """
        Get the newest task for ``task_id``.

        Searches pending, running and finished tasks, in that order.
        """
        for task in self._pending:
            if task.id == task_id:
                return task
        for task in self._in_flight.values():
            if task.id == task_id and not task.status.is_terminal:
                return task
        for task in reversed(self._history):
            if task.id == task_id:
                return task
        return None

    async def list(
        self,
        *,
        status: TaskStatus | None = None,
        kind: TaskKind | None = None,
        limit: int = 100,
    ) -> list[Task]:
        """List known tasks with optional filters."""
        result = []
        for task in self._all_tasks():
            if status is not None and task.status != status:
                continue
            if kind is not None and task.kind != kind:
                continue
            result.append(task)
            if len(result) >= limit:
                break
        return result

    def pending(self) -> list[Task]:
        """Pending and retrying tasks in dispatch order."""
        return collisions.order(self._pending)

    def in_flight(self) -> list[Task]:
        return list(self._in_flight.values())

    def _all_tasks(self) -> list[Task]:
        seen: set[int] = set()
        tasks = []
        for task in itertools.chain(self._pending, self._in_flight.values(), self._history):
            if id(task) not in seen:
                seen.add(id(task))
                tasks.append(task)
        return tasks

    def get_stats(self) -> QueueStats:
        """Counts by status and kind plus processing time figures."""
        tasks = self._all_tasks()
        stats = QueueStats(total=len(tasks))
        for status in TaskStatus:
            stats.by_status[status.value] = 0
        for kind in TaskKind:
            stats.by_kind[kind.value] = 0

        hour_ago = self._clock() - 3600
        durations = []
        for task in tasks:
            stats.by_status[task.status.value] += 1
            stats.by_kind[task.kind.value] += 1
            if task.status is TaskStatus.COMPLETED:
                if task.processing_time is not None:
                    durations.append(task.processing_time)
                if task.completed_at is not None and task.completed_at >= hour_ago:
                    stats.completed_last_hour += 1

        stats.failed_count = stats.by_status[TaskStatus.FAILED.value]
        stats.retrying_count = stats.by_status[TaskStatus.RETRYING.value]
        if durations:
            stats.avg_processing_time_ms = sum(durations) / len(durations) * 1000
        return stats

    def debug_blocked(self) -> list[dict[str, Any]]:
        """
        Get diagnostic info about why queued tasks are not running.

        Returns a list of dicts with ``task``, ``reason`` ('stopped',
        'backoff', 'document_busy', 'concurrency_full') and ``details``.
        """
        blocked = []
        now = self._clock()
        busy = {t.id for t in self._in_flight.values() if t.status is TaskStatus.PROCESSING}

        for task in collisions.order(self._pending):
            if not self._running:
                reason, details = "stopped", "Queue is not running"
            elif task.status is TaskStatus.RETRYING:
                wait = max(0.0, (task.not_before or now) - now)
                reason, details = "backoff", f"Retry {task.retry_count} due in {wait:.1f}s"
            elif task.id in busy:
                reason, details = "document_busy", f"Another task for {task.id} is running"
            else:
                reason = "concurrency_full"
                details = f"{len(self._in_flight)}/{self.settings.max_concurrent} slots in use"
            blocked.append({"task": task, "reason": reason, "details": details})

        return blocked

    # --- Notifications ---

    def _report(self, task: Task, percent: int, step: str) -> None:
        update = ProgressUpdate(task_id=task.id, percent=percent, step=step)
        if self.reporter is not None:
            try:
                self.reporter.report_progress(update)
            except Exception:
                # Don't let reporter errors affect flow
                logger.debug("Progress reporter failed for %s", task.id, exc_info=True)
        self._emit(TASK_PROGRESS, update)

    def _emit_queue_status(self, status: str) -> None:
        self._emit(QUEUE_STATUS, QueueStatusEvent(
            status=status,
            queue_size=len(self._pending),
            processing_count=len(self._in_flight),
        ))

    def _emit(self, event: str, data: Any) -> None:
        self.events.emit(event, data)
