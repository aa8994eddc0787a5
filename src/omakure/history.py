"""Append-only execution history, one JSON file per run."""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import PersistError
from .types import ExecutionRequest, ExecutionResult, HistoryRecord, Outcome
from .workspace import INDEX_FILENAME

logger = logging.getLogger(__name__)

SLUG_MAX = 64

# Shared by every store in the process so concurrent appends never race
# on the same slug.
_APPEND_LOCK = threading.Lock()

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def safe_slug(text: str) -> str:
    """Lowercase alphanumerics with ``_`` separators, at most 64 chars."""
    slug = _NON_ALNUM_RE.sub("_", text.lower()).strip("_")
    slug = slug[:SLUG_MAX].rstrip("_")
    return slug or "run"


def base_slug(script: str, timestamp_ms: int) -> str:
    return f"{timestamp_ms}-{safe_slug(Path(script).stem)}"


def format_timestamp(timestamp_ms: int) -> str:
    """Local time as ``YYYY-MM-DD HH:MM``."""
    return datetime.fromtimestamp(max(timestamp_ms, 0) / 1000).strftime("%Y-%m-%d %H:%M")


def format_output(record: HistoryRecord) -> str:
    """Combined output text for display."""
    if record.error:
        return record.error.strip()
    parts = []
    if record.stdout.strip():
        parts.append(f"STDOUT:\n{record.stdout.rstrip()}")
    if record.stderr.strip():
        parts.append(f"STDERR:\n{record.stderr.rstrip()}")
    return "\n\n".join(parts)


def _to_dict(record: HistoryRecord) -> dict[str, Any]:
    return {
        "slug": record.slug,
        "timestamp": record.timestamp,
        "finished_at": record.finished_at,
        "script": record.script,
        "args": list(record.args),
        "values": dict(record.values),
        "label": record.label,
        "outcome": record.outcome.value,
        "success": record.success,
        "exit_code": record.exit_code,
        "signal": record.signal,
        "stdout": record.stdout,
        "stderr": record.stderr,
        "error": record.error,
    }


def _from_dict(data: Any, fallback_slug: str) -> HistoryRecord | None:
    if not isinstance(data, dict):
        return None
    timestamp = data.get("timestamp")
    script = data.get("script")
    if not isinstance(timestamp, int) or not isinstance(script, str):
        return None
    raw_outcome = data.get("outcome")
    try:
        outcome = Outcome(raw_outcome)
    except ValueError:
        # Older records only carry success/error.
        if data.get("error"):
            outcome = Outcome.SPAWN_ERROR
        else:
            outcome = Outcome.SUCCESS if data.get("success") else Outcome.FAILED
    return HistoryRecord(
        slug=str(data.get("slug") or fallback_slug),
        timestamp=timestamp,
        finished_at=int(data.get("finished_at") or timestamp),
        script=script,
        args=[str(a) for a in data.get("args") or []],
        values={str(k): str(v) for k, v in (data.get("values") or {}).items()},
        label=str(data.get("label") or ""),
        outcome=outcome,
        exit_code=data.get("exit_code"),
        signal=data.get("signal"),
        stdout=str(data.get("stdout") or ""),
        stderr=str(data.get("stderr") or ""),
        error=data.get("error"),
    )


class HistoryStore:
    """History records under ``<root>/.history``.

    Records are never rewritten or deleted. Each one is created with
    exclusive-create semantics, so two writers can never clobber each
    other even across processes.
    """

    def __init__(self, history_dir: Path, root: Path) -> None:
        self.history_dir = history_dir
        self.root = root

    def _script_path(self, script: Path) -> str:
        try:
            return script.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return script.as_posix()

    def build_record(
        self,
        request: ExecutionRequest,
        result: ExecutionResult,
        slug: str = "",
    ) -> HistoryRecord:
        started = result.started_at or time.time()
        timestamp = int(started * 1000)
        return HistoryRecord(
            slug=slug,
            timestamp=timestamp,
            finished_at=int((result.finished_at or started) * 1000),
            script=self._script_path(request.script),
            args=list(request.args),
            values=dict(request.values),
            label=request.label,
            outcome=result.outcome,
            exit_code=result.exit_code,
            signal=result.signal,
            stdout=result.stdout,
            stderr=result.stderr,
            error=result.error,
        )

    def record(self, request: ExecutionRequest, result: ExecutionResult) -> str:
        """Append one record. Returns its slug.

        Raises:
            PersistError: If the record cannot be written.
        """
        return self.append(self.build_record(request, result))

    def append(self, record: HistoryRecord) -> str:
        base = base_slug(record.script, record.timestamp)
        with _APPEND_LOCK:
            try:
                self.history_dir.mkdir(parents=True, exist_ok=True)
                n = 1
                while True:
                    slug = base if n == 1 else f"{base}-{n}"
                    path = self.history_dir / f"{slug}.json"
                    try:
                        with open(path, "x", encoding="utf-8") as f:
                            stamped = replace(record, slug=slug)
                            json.dump(_to_dict(stamped), f, indent=2)
                        break
                    except FileExistsError:
                        n += 1
            except OSError as e:
                raise PersistError(f"Cannot write history in {self.history_dir}: {e}") from e
        logger.debug("Recorded %s", slug)
        return slug

    def list(self) -> list[HistoryRecord]:
        """All readable records, newest first."""
        records: list[HistoryRecord] = []
        try:
            paths = list(self.history_dir.glob("*.json"))
        except OSError as e:
            logger.warning("Cannot read history: %s", e)
            return records

        for path in paths:
            if path.name == INDEX_FILENAME:
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.debug("Skipping history file %s: %s", path, e)
                continue
            record = _from_dict(data, path.stem)
            if record is not None:
                records.append(record)

        records.sort(key=lambda r: (r.timestamp, r.slug), reverse=True)
        return records
