"""Background tasks and the engine inbox.

Every task runs on its own thread and delivers exactly one completion
message to the inbox. An exception inside a task becomes a TaskFailed
message instead of escaping the thread.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..runner import BatchReport, ItemReport
from ..schema import Discovery
from ..search_index import IndexStatus
from ..types import WidgetResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyPressed:
    key: str


@dataclass(frozen=True)
class WidgetLoaded:
    directory: Path
    token: int
    result: WidgetResult | None


@dataclass(frozen=True)
class SchemaLoaded:
    script: Path
    discovery: Discovery


@dataclass(frozen=True)
class PreviewLoaded:
    path: Path
    token: int
    discovery: Discovery


@dataclass(frozen=True)
class IndexRebuilt:
    status: IndexStatus


@dataclass(frozen=True)
class RunProgress:
    job_id: int
    item: ItemReport


@dataclass(frozen=True)
class RunFinished:
    job_id: int
    report: BatchReport


@dataclass(frozen=True)
class TaskFailed:
    task: str
    error: str
    token: Any = None


class TaskInbox:
    """The single message queue the engine drains between renders."""

    def __init__(self) -> None:
        self.messages: queue.Queue = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def put(self, message: object) -> None:
        self.messages.put(message)

    def get(self, timeout: float | None = None) -> object | None:
        """Next message, waiting up to timeout (0 = don't wait)."""
        try:
            if not timeout:
                return self.messages.get_nowait()
            return self.messages.get(timeout=timeout)
        except queue.Empty:
            return None

    def spawn(
        self,
        name: str,
        work: Callable[[], object],
        token: Any = None,
    ) -> threading.Thread:
        """Run work on a daemon thread and post its returned message."""

        def target() -> None:
            try:
                message = work()
            except Exception as e:
                logger.exception("Background task %s failed", name)
                message = TaskFailed(task=name, error=str(e) or e.__class__.__name__, token=token)
            self.put(message)

        thread = threading.Thread(target=target, name=f"omakure:{name}", daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()
        return thread

    def join(self, timeout: float | None = None) -> bool:
        """Wait for outstanding tasks. Returns True if all finished."""
        with self._lock:
            threads = list(self._threads)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            if deadline is None:
                thread.join()
            else:
                thread.join(max(0.0, deadline - time.monotonic()))
        return not any(t.is_alive() for t in threads)
