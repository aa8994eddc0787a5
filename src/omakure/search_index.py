"""Search index over workspace scripts.

A snapshot is built completely off to the side and then published by
swapping one reference under a lock. Queries grab the current
reference and never see a half-built snapshot, and never wait for a
rebuild to finish.

Ranking for a query (lowercased, ``_`` read as ``-``):
    0. exact name or file stem
    1. prefix of name or stem
    2. substring of name, stem, path or description
    3. every query word is a prefix of some record token
Ties are broken by path. Non-matching records are dropped.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import PersistError
from .repository import EntryRepository
from .schema import SchemaCache
from .types import IndexRecord

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

_WORD_RE = re.compile(r"[a-z0-9]+")


def _fold(text: str) -> str:
    return text.lower().replace("_", "-")


def tokenize(*texts: str) -> frozenset[str]:
    tokens: set[str] = set()
    for text in texts:
        tokens.update(_WORD_RE.findall(text.lower()))
    return frozenset(tokens)


def make_record(
    path: str,
    name: str,
    description: str = "",
    tags: Iterable[str] = (),
    fields: Iterable[str] = (),
    schema_error: str | None = None,
) -> IndexRecord:
    tags = tuple(tags)
    fields = tuple(fields)
    return IndexRecord(
        path=path,
        name=name,
        description=description,
        tags=tags,
        fields=fields,
        schema_error=schema_error,
        tokens=tokenize(path, name, description, *tags, *fields),
    )


@dataclass(frozen=True)
class Snapshot:
    """An immutable, fully built index."""

    generation: int = 0
    records: tuple[IndexRecord, ...] = ()
    postings: dict[str, frozenset[int]] = field(default_factory=dict)

    @classmethod
    def build(cls, records: Iterable[IndexRecord], generation: int) -> Snapshot:
        ordered = tuple(sorted(records, key=lambda r: r.path))
        postings: dict[str, set[int]] = {}
        for i, record in enumerate(ordered):
            for token in record.tokens:
                postings.setdefault(token, set()).add(i)
        return cls(
            generation=generation,
            records=ordered,
            postings={token: frozenset(ids) for token, ids in postings.items()},
        )

    def _word_matches(self, words: list[str]) -> set[int]:
        matched: set[int] | None = None
        for word in words:
            ids: set[int] = set()
            for token, postings in self.postings.items():
                if token.startswith(word):
                    ids.update(postings)
            matched = ids if matched is None else matched & ids
            if not matched:
                return set()
        return matched or set()

    def rank(self, record: IndexRecord, query: str) -> int | None:
        name = _fold(record.name)
        stem = _fold(record.stem)
        if query in (name, stem):
            return 0
        if name.startswith(query) or stem.startswith(query):
            return 1
        haystacks = (name, stem, _fold(record.path), record.description.lower())
        if any(query in hay for hay in haystacks):
            return 2
        return None

    def query(self, text: str) -> list[IndexRecord]:
        q = _fold(text.strip())
        if not q:
            return list(self.records)

        word_ids = self._word_matches(_WORD_RE.findall(q))
        ranked: list[tuple[int, str, IndexRecord]] = []
        for i, record in enumerate(self.records):
            rank = self.rank(record, q)
            if rank is None and i in word_ids:
                rank = 3
            if rank is not None:
                ranked.append((rank, record.path, record))
        ranked.sort(key=lambda item: (item[0], item[1]))
        return [record for _, _, record in ranked]


@dataclass(frozen=True)
class IndexStatus:
    """idle | indexing | ready(count) | error(message)"""

    state: str = "idle"
    count: int = 0
    message: str = ""

    def describe(self) -> str:
        if self.state == "ready":
            text = f"{self.count} scripts indexed"
            return f"{text} ({self.message})" if self.message else text
        if self.state == "indexing":
            return "Indexing..."
        if self.state == "error":
            return f"Index error: {self.message}"
        return "Index idle"


def _record_to_dict(record: IndexRecord) -> dict:
    return {
        "path": record.path,
        "name": record.name,
        "description": record.description,
        "tags": list(record.tags),
        "fields": list(record.fields),
        "schema_error": record.schema_error,
    }


def _record_from_dict(data: dict) -> IndexRecord:
    return make_record(
        path=str(data["path"]),
        name=str(data.get("name") or Path(str(data["path"])).name),
        description=str(data.get("description") or ""),
        tags=[str(t) for t in data.get("tags") or []],
        fields=[str(f) for f in data.get("fields") or []],
        schema_error=data.get("schema_error"),
    )


class SearchIndex:
    """The process-wide search index.

    ``rebuild`` is meant to run on a background thread; ``query`` and
    ``status`` are safe to call from any thread at any time.
    """

    def __init__(self, snapshot_path: Path | None = None) -> None:
        self.snapshot_path = snapshot_path
        self._lock = threading.Lock()
        self._snapshot = Snapshot()
        self._status = IndexStatus()

    @property
    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    @property
    def status(self) -> IndexStatus:
        with self._lock:
            return self._status

    def _set_status(self, status: IndexStatus) -> None:
        with self._lock:
            self._status = status

    def publish(self, records: Iterable[IndexRecord]) -> Snapshot:
        """Build a snapshot from records and swap it in."""
        with self._lock:
            generation = self._snapshot.generation + 1
        snapshot = Snapshot.build(records, generation)
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def query(self, text: str) -> list[IndexRecord]:
        return self.snapshot.query(text)

    def load_persisted(self) -> bool:
        """Publish the snapshot saved by a previous run, if readable."""
        if self.snapshot_path is None:
            return False
        try:
            data = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
            if data.get("version") != SNAPSHOT_VERSION:
                return False
            records = [_record_from_dict(item) for item in data["records"]]
        except FileNotFoundError:
            return False
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug("Ignoring persisted index %s: %s", self.snapshot_path, e)
            return False
        snapshot = self.publish(records)
        self._set_status(IndexStatus("ready", len(snapshot.records), "cached"))
        return True

    def persist(self, snapshot: Snapshot) -> None:
        """Write the snapshot atomically.

        Raises:
            PersistError: If the file cannot be written.
        """
        if self.snapshot_path is None:
            return
        payload = {
            "version": SNAPSHOT_VERSION,
            "records": [_record_to_dict(r) for r in snapshot.records],
        }
        tmp_path = None
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.snapshot_path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.snapshot_path)
            tmp_path = None
        except OSError as e:
            raise PersistError(f"Cannot write search index: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def rebuild(self, repository: EntryRepository, schemas: SchemaCache) -> IndexStatus:
        """Rescan the workspace and publish a fresh snapshot.

        Never raises for per-script problems: a script whose schema
        cannot be discovered is indexed by file name with its error.
        """
        self._set_status(IndexStatus("indexing", len(self.snapshot.records)))
        try:
            records = [self._index_script(path, repository.root, schemas) for path in repository.list_scripts()]
        except OSError as e:
            status = IndexStatus("error", message=str(e))
            self._set_status(status)
            return status

        snapshot = self.publish(records)
        status = IndexStatus("ready", len(snapshot.records))
        try:
            self.persist(snapshot)
        except PersistError as e:
            logger.warning("%s", e)
            status = IndexStatus("ready", len(snapshot.records), f"not saved: {e}")
        self._set_status(status)
        return status

    @staticmethod
    def _index_script(path: Path, root: Path, schemas: SchemaCache) -> IndexRecord:
        relative = path.relative_to(root).as_posix()
        discovery = schemas.get(path)
        if discovery.schema is None:
            return make_record(relative, path.name, schema_error=discovery.error)
        schema = discovery.schema
        return make_record(
            relative,
            schema.name,
            schema.description,
            schema.tags,
            [part for f in schema.fields for part in (f.name, f.prompt)],
        )
