"""Type definitions for omakure.

Shared enums and dataclasses passed between the repository, discovery,
normalizer, runner, history and search layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class EntryKind(str, Enum):
    """Kinds of workspace entries."""

    DIRECTORY = "directory"
    SCRIPT = "script"

    def __str__(self) -> str:
        return self.value


class FieldType(str, Enum):
    """Value types a schema field can declare."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"

    def __str__(self) -> str:
        return self.value


class Outcome(str, Enum):
    """How an execution ended."""

    SUCCESS = "success"
    FAILED = "failed"
    KILLED = "killed"
    CANCELLED = "cancelled"
    SPAWN_ERROR = "spawn_error"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value

    @property
    def ok(self) -> bool:
        return self == Outcome.SUCCESS


@dataclass(frozen=True)
class Entry:
    """A script file or directory under the workspace root."""

    path: Path
    relative: Path
    kind: EntryKind
    has_widget: bool = False

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_dir(self) -> bool:
        return self.kind == EntryKind.DIRECTORY


# ── schema ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Field:
    """One input parameter declared by a schema."""

    name: str
    prompt: str
    type: FieldType = FieldType.STRING
    order: int = 0
    required: bool = False
    arg: str = ""
    default: str | None = None
    choices: tuple[str, ...] | None = None

    @property
    def flag(self) -> str:
        """CLI flag emitted for this field."""
        return self.arg or f"--{self.name}"


@dataclass(frozen=True)
class Output:
    name: str
    type: str = "string"


@dataclass(frozen=True)
class MatrixEntry:
    name: str
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class Case:
    name: str | None
    values: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Queue:
    """Batch declaration: either a matrix or an explicit list of cases."""

    matrix: tuple[MatrixEntry, ...] | None = None
    cases: tuple[Case, ...] | None = None

    @property
    def field_names(self) -> list[str]:
        """Field names referenced by this queue, in declaration order."""
        names: list[str] = []
        if self.matrix is not None:
            names.extend(entry.name for entry in self.matrix)
        for case in self.cases or ():
            names.extend(name for name, _ in case.values)
        return list(dict.fromkeys(names))


@dataclass(frozen=True)
class Schema:
    """A script's self-described contract."""

    name: str
    description: str = ""
    tags: tuple[str, ...] = ()
    fields: tuple[Field, ...] = ()
    outputs: tuple[Output, ...] = ()
    queue: Queue | None = None

    def ordered_fields(self) -> list[Field]:
        """Fields in display/argument order (stable for equal Order values)."""
        return sorted(self.fields, key=lambda f: f.order)

    def get_field(self, name: str) -> Field | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class NamedValueSet:
    """One expanded queue item: a label and the field values it pins."""

    label: str
    values: dict[str, str] = field(default_factory=dict)


# ── execution ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecutionRequest:
    """A fully resolved command, ready to spawn once."""

    command: tuple[str, ...]
    args: tuple[str, ...]
    cwd: Path
    script: Path
    label: str = ""
    values: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [*self.command, *self.args]


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one execution. Immutable once produced."""

    outcome: Outcome
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    signal: int | None = None
    error: str | None = None
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome.ok

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def summary(self) -> str:
        """Short human-readable outcome description."""
        if self.outcome == Outcome.FAILED:
            return f"failed (exit {self.exit_code})"
        if self.outcome == Outcome.KILLED:
            return f"killed (signal {self.signal})"
        if self.outcome == Outcome.SPAWN_ERROR:
            return f"could not start: {self.error}"
        return str(self.outcome)


@dataclass(frozen=True)
class HistoryRecord:
    """A persisted log entry for one execution."""

    slug: str
    timestamp: int
    script: str
    args: list[str] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)
    label: str = ""
    outcome: Outcome = Outcome.SUCCESS
    exit_code: int | None = None
    signal: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    finished_at: int = 0

    @property
    def success(self) -> bool:
        return self.outcome.ok


# ── search / widgets ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class IndexRecord:
    """Search-index projection of one script."""

    path: str
    name: str
    description: str = ""
    tags: tuple[str, ...] = ()
    fields: tuple[str, ...] = ()
    schema_error: str | None = None
    tokens: frozenset[str] = frozenset()

    @property
    def stem(self) -> str:
        return Path(self.path).stem


@dataclass(frozen=True)
class WidgetResult:
    """Display data produced by a folder widget."""

    title: str
    lines: tuple[str, ...] = ()
    error: bool = False
