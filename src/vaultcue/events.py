"""Lifecycle event fan-out."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)

TASK_STATUS = "task-status"
QUEUE_STATUS = "queue-status"
TASK_PROGRESS = "task-progress"

EVENT_NAMES = (TASK_STATUS, QUEUE_STATUS, TASK_PROGRESS)


class EventEmitter:
    """
    Synchronous publish/subscribe for queue events.

    Listener errors are logged and swallowed so they never affect scheduling.
    Coroutine listeners are scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable]] = {}
        self._streams: list[asyncio.Queue] = []
        self._listener_tasks: set[asyncio.Future] = set()

    def on(self, event: str, callback: Callable | None = None):
        """
        Subscribe to ``event``.

        Returns an unsubscribe function, or works as a decorator when called
        without ``callback``.

        Example:
            @emitter.on("task-status")
            def log_transition(evt):
                print(evt.task_id, evt.status)
        """
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {event}")

        if callback is None:
            def decorator(func):
                self.on(event, func)
                return func
            return decorator

        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def emit(self, event: str, data: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                result = callback(data)
                if inspect.isawaitable(result):
                    future = asyncio.ensure_future(result)
                    self._listener_tasks.add(future)
                    future.add_done_callback(functools.partial(self._listener_done, event))
            except Exception:
                logger.exception("Listener for %s failed", event)

        for stream in self._streams:
            stream.put_nowait((event, data))

    def _listener_done(self, event: str, future: asyncio.Future) -> None:
        self._listener_tasks.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Listener for %s failed", event, exc_info=exc)

    async def stream(self, *events: str) -> AsyncIterator[Any]:
        """
        Iterate over emitted events as they happen.

        Only payloads of the named events are yielded (all events when none
        are named). The subscription ends when the iterator is closed.
        """
        wanted = set(events) or set(EVENT_NAMES)
        queue: asyncio.Queue = asyncio.Queue()
        self._streams.append(queue)
        try:
            while True:
                event, data = await queue.get()
                if event in wanted:
                    yield data
        finally:
            self._streams.remove(queue)
