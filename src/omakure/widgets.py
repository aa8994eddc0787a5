"""Folder widgets: ``<dir>/index.lua`` rendered as a small panel.

A widget chunk either returns ``{title = ..., lines = {...}}``, sets a
global ``widget`` table of the same shape, or sets globals ``title`` and
``lines``. Loading never raises: errors and timeouts come back as a
fallback WidgetResult carrying a diagnostic line.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from lupa import LuaError, LuaRuntime, lua_type

from .types import WidgetResult
from .workspace import WIDGET_FILENAME

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.0

# Aborts runaway Lua loops once the deadline passes. os.clock is CPU
# time, so blocking io.popen calls are bounded by the thread join instead.
_DEADLINE_HOOK = """
local limit = ...
local deadline = os.clock() + limit
debug.sethook(function()
  if os.clock() > deadline then
    error("widget timed out", 2)
  end
end, "", 10000)
"""


class WidgetFormatError(ValueError):
    """The chunk ran but did not produce a title and lines."""


def widget_path(directory: Path) -> Path:
    return directory / WIDGET_FILENAME


def _to_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _read_lines(table: Any) -> tuple[str, ...]:
    if lua_type(table) != "table":
        raise WidgetFormatError("`lines` must be a table")
    return tuple(_to_text(table[i]) for i in range(1, len(table) + 1))


def _read_widget_table(table: Any) -> WidgetResult:
    title = table["title"]
    if title is None:
        raise WidgetFormatError("Lua widget missing `title`")
    lines = table["lines"]
    if lines is None:
        raise WidgetFormatError("Lua widget missing `lines`")
    return WidgetResult(title=_to_text(title), lines=_read_lines(lines))


def evaluate(code: str, timeout: float = DEFAULT_TIMEOUT) -> WidgetResult:
    """Run widget source and extract its title and lines.

    Raises:
        LuaError: If the chunk fails to compile or run.
        WidgetFormatError: If it yields no usable widget.
    """
    lua = LuaRuntime()
    lua.execute(_DEADLINE_HOOK, timeout)
    value = lua.execute(code)
    if isinstance(value, tuple):
        value = value[0] if value else None

    if lua_type(value) == "table":
        return _read_widget_table(value)

    globals_ = lua.globals()
    widget = globals_.widget
    if lua_type(widget) == "table":
        return _read_widget_table(widget)

    title = globals_.title
    lines = globals_.lines
    if title is not None and lines is not None:
        return WidgetResult(title=_to_text(title), lines=_read_lines(lines))

    raise WidgetFormatError("Lua widget must return a table with `title` and `lines`")


def fallback(directory: Path, message: str) -> WidgetResult:
    return WidgetResult(title=directory.name or str(directory), lines=(message,), error=True)


def load_widget(directory: Path, timeout: float = DEFAULT_TIMEOUT) -> WidgetResult | None:
    """Load a directory's widget.

    Returns None when the directory has no widget, otherwise the widget
    or a fallback describing why it could not be shown.
    """
    path = widget_path(directory)
    if not path.is_file():
        return None
    try:
        code = path.read_text(errors="replace")
    except OSError as e:
        return fallback(directory, f"Failed to read {path.name}: {e}")

    outcome: dict[str, Any] = {}

    def work() -> None:
        try:
            outcome["result"] = evaluate(code, timeout)
        except (LuaError, WidgetFormatError) as e:
            outcome["error"] = str(e)

    worker = threading.Thread(target=work, name=f"widget:{directory.name}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        logger.debug("Widget %s timed out after %ss", path, timeout)
        return fallback(directory, f"Widget timed out after {timeout:g}s")
    if "error" in outcome:
        logger.debug("Widget %s failed: %s", path, outcome["error"])
        return fallback(directory, f"Lua error: {outcome['error']}")
    return outcome.get("result") or fallback(directory, "Widget produced no result")
