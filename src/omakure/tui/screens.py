"""Navigator screens.

Each screen is a dataclass carrying only the data that screen needs.
The engine owns exactly one current screen. ``back`` points at the
screen to return to; None means the script browser.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from ..runner import BatchReport, ItemReport
from ..schema import Discovery
from ..types import Entry, Field, HistoryRecord, IndexRecord, Schema, WidgetResult


@dataclass
class ScriptSelect:
    """Browse the workspace tree."""

    directory: Path
    entries: list[Entry] = field(default_factory=list)
    cursor: int = 0
    widget: WidgetResult | None = None
    widget_loading: bool = False
    # Script whose schema is being discovered in the background.
    pending: Path | None = None
    message: str | None = None
    # Schema preview of the selected script; None while it loads.
    preview: Discovery | None = None
    preview_path: Path | None = None
    preview_token: int = 0

    @property
    def selected(self) -> Entry | None:
        if 0 <= self.cursor < len(self.entries):
            return self.entries[self.cursor]
        return None


@dataclass
class Search:
    query: str = ""
    results: list[IndexRecord] = field(default_factory=list)
    cursor: int = 0
    back: Screen | None = None
    preview: Discovery | None = None
    preview_path: Path | None = None
    preview_token: int = 0

    @property
    def selected(self) -> IndexRecord | None:
        if 0 <= self.cursor < len(self.results):
            return self.results[self.cursor]
        return None


@dataclass
class Environments:
    names: list[str] = field(default_factory=list)
    active: str | None = None
    cursor: int = 0
    preview: list[tuple[str, str]] = field(default_factory=list)
    error: str | None = None
    back: Screen | None = None

    @property
    def selected(self) -> str | None:
        if 0 <= self.cursor < len(self.names):
            return self.names[self.cursor]
        return None


@dataclass
class FieldInput:
    """Collect and validate one schema's fields."""

    script: Path
    schema: Schema
    fields: list[Field]
    values: dict[str, str] = field(default_factory=dict)
    queued: set[str] = field(default_factory=set)
    cursor: int = 0
    error: str | None = None
    back: Screen | None = None

    @property
    def current(self) -> Field | None:
        if 0 <= self.cursor < len(self.fields):
            return self.fields[self.cursor]
        return None


@dataclass
class History:
    records: list[HistoryRecord] = field(default_factory=list)
    cursor: int = 0
    detail: bool = False
    scroll: int = 0
    back: Screen | None = None

    @property
    def selected(self) -> HistoryRecord | None:
        if 0 <= self.cursor < len(self.records):
            return self.records[self.cursor]
        return None


@dataclass
class Running:
    job_id: int
    script: Path
    title: str
    total: int
    cancel: threading.Event
    done: list[ItemReport] = field(default_factory=list)
    cancel_requested: bool = False
    started_at: float = 0.0
    back: Screen | None = None


@dataclass
class RunResult:
    script: Path
    title: str
    report: BatchReport
    command: str = ""
    scroll: int = 0
    back: Screen | None = None


@dataclass
class Error:
    title: str
    message: str
    hint: str | None = None
    fatal: bool = False
    back: Screen | None = None


Screen = Union[ScriptSelect, Search, Environments, FieldInput, History, Running, RunResult, Error]
