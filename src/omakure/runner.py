"""Script runner: spawn, capture, cancel.

``run_script`` executes one ExecutionRequest. ``RunJob`` executes a
batch of them strictly in order on the calling thread, recording a
history entry after each, and honors a shared cancel event.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .errors import PersistError
from .history import HistoryStore
from .types import ExecutionRequest, ExecutionResult, Outcome

logger = logging.getLogger(__name__)

POLL_SECONDS = 0.1
DEFAULT_GRACE_SECONDS = 2.0

_POSIX = os.name == "posix"


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    """Signal the child's whole process group so grandchildren go too."""
    try:
        if _POSIX:
            os.killpg(proc.pid, sig)
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


def _stop(proc: subprocess.Popen, grace: float) -> tuple[str, str]:
    """SIGTERM, then SIGKILL after the grace period. Returns remaining output."""
    _signal_group(proc, signal.SIGTERM)
    try:
        return proc.communicate(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.debug("pid %s ignored SIGTERM; killing", proc.pid)
        _signal_group(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
        return proc.communicate()


def run_script(
    request: ExecutionRequest,
    cancel: threading.Event | None = None,
    grace: float = DEFAULT_GRACE_SECONDS,
) -> ExecutionResult:
    """Run a request to completion or cancellation.

    stdout and stderr are captured separately. A spawn failure (missing
    interpreter, permission denied) is reported as SPAWN_ERROR, never as
    a non-zero exit.
    """
    started = time.time()
    logger.debug("Spawning %s (cwd=%s)", request.argv, request.cwd)
    try:
        proc = subprocess.Popen(
            request.argv,
            cwd=request.cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=_POSIX,
        )
    except OSError as e:
        return ExecutionResult(
            outcome=Outcome.SPAWN_ERROR,
            error=str(e),
            started_at=started,
            finished_at=time.time(),
        )

    cancelled = False
    while True:
        if cancel is not None and cancel.is_set():
            stdout, stderr = _stop(proc, grace)
            cancelled = True
            break
        try:
            stdout, stderr = proc.communicate(timeout=POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            continue

    finished = time.time()
    rc = proc.returncode
    if cancelled:
        return ExecutionResult(
            outcome=Outcome.CANCELLED,
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=rc if rc is not None and rc >= 0 else None,
            signal=-rc if rc is not None and rc < 0 else None,
            started_at=started,
            finished_at=finished,
        )
    if rc == 0:
        outcome = Outcome.SUCCESS
    elif rc < 0:
        outcome = Outcome.KILLED
    else:
        outcome = Outcome.FAILED
    return ExecutionResult(
        outcome=outcome,
        stdout=stdout or "",
        stderr=stderr or "",
        exit_code=rc if rc >= 0 else None,
        signal=-rc if rc < 0 else None,
        started_at=started,
        finished_at=finished,
    )


@dataclass(frozen=True)
class ItemReport:
    """One batch item and what happened to it."""

    index: int
    request: ExecutionRequest
    result: ExecutionResult
    history_slug: str | None = None
    history_error: str | None = None


@dataclass
class BatchReport:
    items: list[ItemReport] = field(default_factory=list)
    total: int = 0
    cancelled: bool = False

    @property
    def skipped(self) -> int:
        return sum(1 for item in self.items if item.result.outcome == Outcome.SKIPPED)

    @property
    def last(self) -> ItemReport | None:
        ran = [item for item in self.items if item.result.outcome != Outcome.SKIPPED]
        return ran[-1] if ran else None

    @property
    def success(self) -> bool:
        return bool(self.items) and all(item.result.success for item in self.items)

    @property
    def warnings(self) -> list[str]:
        return [item.history_error for item in self.items if item.history_error]


class RunJob:
    """Sequential execution of one or more requests.

    Items run strictly in order; none run in parallel. Cancellation stops
    the in-flight process and prevents any further item from starting.
    With ``stop_on_failure`` a failed item does the same. Items that never
    started are reported as SKIPPED and are not written to history. A
    cancel that lands before the first item starts still records that
    item as CANCELLED.
    """

    def __init__(
        self,
        requests: list[ExecutionRequest],
        history: HistoryStore | None = None,
        *,
        stop_on_failure: bool = True,
        grace: float = DEFAULT_GRACE_SECONDS,
        cancel: threading.Event | None = None,
        runner: Callable[..., ExecutionResult] = run_script,
    ) -> None:
        self.requests = list(requests)
        self.history = history
        self.stop_on_failure = stop_on_failure
        self.grace = grace
        self.cancel = cancel or threading.Event()
        self._runner = runner

    def run(self, on_item: Callable[[ItemReport], None] | None = None) -> BatchReport:
        report = BatchReport(total=len(self.requests))
        halted = False
        for index, request in enumerate(self.requests):
            if self.cancel.is_set() and index == 0:
                now = time.time()
                result = ExecutionResult(outcome=Outcome.CANCELLED, started_at=now, finished_at=now)
            elif halted or self.cancel.is_set():
                report.cancelled = report.cancelled or self.cancel.is_set()
                item = ItemReport(index, request, ExecutionResult(outcome=Outcome.SKIPPED))
                report.items.append(item)
                continue
            else:
                result = self._runner(request, cancel=self.cancel, grace=self.grace)

            item = self._record(index, request, result)
            report.items.append(item)
            if on_item is not None:
                on_item(item)

            if result.outcome == Outcome.CANCELLED:
                report.cancelled = True
                halted = True
            elif not result.success and self.stop_on_failure:
                halted = True
        return report

    def _record(self, index: int, request: ExecutionRequest, result: ExecutionResult) -> ItemReport:
        if self.history is None:
            return ItemReport(index, request, result)
        try:
            slug = self.history.record(request, result)
        except PersistError as e:
            logger.warning("History not saved: %s", e)
            return ItemReport(index, request, result, history_error=str(e))
        return ItemReport(index, request, result, history_slug=slug)

