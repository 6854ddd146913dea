"""Error log and notification side channel."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from vaultcue.protocols import Notifier

logger = logging.getLogger(__name__)

LEVELS = ("error", "warn", "info", "debug")

_LOGGING_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclass
class ErrorContext:
    """Where an error happened."""

    context: str
    task_id: str | None = None
    task_kind: str | None = None
    phase: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorLogEntry:
    timestamp: float
    error: BaseException
    context: ErrorContext
    level: str = "error"

    @property
    def code(self) -> str:
        return getattr(self.error, "code", "UNKNOWN_ERROR")


class ErrorHandler:
    """
    Records errors with context, logs them and forwards serious ones.

    Keeps the newest ``max_entries`` entries. Error-level entries are also
    passed to the notifier, if one is configured. Nothing here raises back
    into the caller.
    """

    def __init__(self, notifier: Notifier | None = None, max_entries: int = 100) -> None:
        self.notifier = notifier
        self._entries: deque[ErrorLogEntry] = deque(maxlen=max_entries)

    def handle_error(
        self,
        error: BaseException,
        context: ErrorContext,
        level: str = "error",
    ) -> ErrorLogEntry:
        if level not in LEVELS:
            raise ValueError(f"Unknown level: {level}")

        entry = ErrorLogEntry(timestamp=time.time(), error=error, context=context, level=level)
        self._entries.appendleft(entry)

        logger.log(
            _LOGGING_LEVELS[level],
            "[%s] %s: %s (task=%s kind=%s phase=%s)",
            entry.code,
            context.context,
            error,
            context.task_id,
            context.task_kind,
            context.phase,
        )

        if self.notifier is not None and level == "error":
            try:
                self.notifier.notify(f"Error: {error}", level)
            except Exception:
                logger.exception("Notifier failed")

        return entry

    def entries(self, level: str | None = None, limit: int | None = None) -> list[ErrorLogEntry]:
        """Newest first, optionally filtered by level."""
        result = [e for e in self._entries if level is None or e.level == level]
        return result[:limit] if limit is not None else result

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
