"""Render navigator screens as Rich markup.

Rendering is a pure function of engine state: each builder returns one
markup string. Anything that came from disk or a child process is
escaped before it is interpolated.
"""

from __future__ import annotations

import os
import time

from rich.markup import escape
from rich.text import Text

from ..history import format_output, format_timestamp
from ..runner import BatchReport
from ..types import FieldType, Outcome
from .screens import (
    Environments,
    Error,
    FieldInput,
    History,
    Running,
    RunResult,
    ScriptSelect,
    Search,
)
from .theme import (
    cursor_prefix,
    dim_separator,
    get_theme,
    header,
    keybinding_hint,
    outcome_style,
    row_style,
    styled,
)

SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


def _get_terminal_height() -> int:
    try:
        return os.get_terminal_size().lines
    except OSError:
        return 24


def _visible_range(cursor: int, total: int, max_visible: int) -> tuple[int, int]:
    if total == 0:
        return 0, 0
    start = max(0, min(cursor - max_visible + 1, total - max_visible))
    start = max(0, min(start, cursor))
    return start, min(start + max_visible, total)


def _scroll_indicators(lines: list[str], body: list[str], start: int, end: int, total: int) -> None:
    if start > 0:
        lines.append(f"[dim]  ↑ {start} more[/dim]")
    lines.extend(body)
    if end < total:
        lines.append(f"[dim]  ↓ {total - end} more[/dim]")


def _window(text_lines: list[str], scroll: int, height: int) -> tuple[list[str], int]:
    """Slice of text_lines starting at scroll, clamped to the text."""
    scroll = max(0, min(scroll, max(0, len(text_lines) - height)))
    return text_lines[scroll : scroll + height], scroll


def result_lines(report: BatchReport) -> list[str]:
    """Plain-text lines describing a finished batch."""
    lines: list[str] = []
    multi = report.total > 1
    for item in report.items:
        result = item.result
        label = item.request.label or item.request.script.name
        if multi:
            lines.append(f"[{item.index + 1}/{report.total}] {label}: {result.summary()}")
        else:
            lines.append(f"Result: {result.summary()}")
        if result.outcome == Outcome.SKIPPED:
            continue
        if result.error:
            lines.append(f"  {result.error}")
        if result.stdout:
            lines.append("STDOUT:")
            lines.extend(result.stdout.rstrip("\n").splitlines())
        if result.stderr:
            lines.append("STDERR:")
            lines.extend(result.stderr.rstrip("\n").splitlines())
        if not result.stdout and not result.stderr and not result.error:
            lines.append("(no output)")
    for warning in report.warnings:
        lines.append(f"Warning: {warning}")
    return lines


def preview_lines(path, discovery) -> list[str]:
    """Markup lines describing the selected script's schema."""
    if path is None:
        return []
    theme = get_theme()
    lines = [styled(f"  Schema: {escape(path.name)}", f"bold {theme.info}")]
    if discovery is None:
        lines.append(styled("    Loading schema...", theme.muted))
        return lines
    schema = discovery.schema
    if schema is None:
        lines.append(styled("    " + escape(discovery.error or "No schema found"), theme.error))
        return lines

    lines.append(f"    Name: {escape(schema.name)}")
    if schema.description.strip():
        lines.append(f"    Description: {escape(schema.description.strip())}")
    if schema.tags:
        lines.append(styled("    Tags: " + escape(", ".join(schema.tags)), theme.muted))
    fields = schema.ordered_fields()
    if not fields:
        lines.append(styled("    (no fields)", theme.muted))
        return lines
    for f in fields:
        need = styled("required", theme.error) if f.required else styled("optional", theme.success)
        name = styled(escape(f.name), f"bold {theme.warning}")
        lines.append(f"    - {name} ({styled(str(f.type), theme.info)}, {need})")
        if f.prompt.strip() and f.prompt != f.name:
            lines.append(styled(f"        prompt: {escape(f.prompt.strip())}", theme.muted))
        if f.choices:
            lines.append(styled("        choices: " + escape(" | ".join(f.choices)), theme.muted))
        if f.default:
            lines.append(styled(f"        default: {escape(f.default)}", theme.muted))
    return lines


def _render_browser(screen: ScriptSelect, root, status: str, height: int) -> str:
    theme = get_theme()
    try:
        location = screen.directory.relative_to(root).as_posix()
    except ValueError:
        location = str(screen.directory)
    lines = [header("omakure", "/" if location == "." else f"/{location}"), dim_separator()]

    if screen.widget_loading:
        lines.append(styled("  Loading widget...", theme.muted))
        lines.append("")
    elif screen.widget is not None:
        widget = screen.widget
        style = theme.error if widget.error else theme.info
        lines.append("  " + styled(escape(widget.title), f"bold {style}"))
        for text in widget.lines:
            lines.append("  " + styled(escape(text), style))
        lines.append("")

    preview = preview_lines(screen.preview_path, screen.preview)
    reserved = len(lines) + len(preview) + 6
    start, end = _visible_range(screen.cursor, len(screen.entries), max(3, height - reserved))
    body: list[str] = []
    for i in range(start, end):
        entry = screen.entries[i]
        is_cur = i == screen.cursor
        open_tag, close_tag = row_style(is_cur)
        name = escape(entry.name)
        if entry.is_dir:
            name = styled(name + "/", theme.accent)
        elif entry.path == screen.pending:
            name += " " + styled("…", theme.muted)
        body.append(f"{cursor_prefix(is_cur)}{open_tag}{name}{close_tag}")
    if not screen.entries:
        body.append(styled("  (empty)", theme.muted))
    _scroll_indicators(lines, body, start, end, len(screen.entries))
    if preview:
        lines.append("")
        lines.extend(preview)

    lines.append("")
    if screen.message:
        lines.append(styled(escape(screen.message), theme.warning))
    lines.append(styled(escape(status), theme.muted))
    lines.append(
        keybinding_hint(
            ["↵ open", "← back", "/ search", "h history", "e envs", "r refresh", "q quit"],
            include_nav=True,
        )
    )
    return "\n".join(lines)


def _render_search(screen: Search, status: str, height: int) -> str:
    theme = get_theme()
    lines = [header("Search"), dim_separator()]
    lines.append(f"  / {escape(screen.query)}" + styled("▏", theme.accent))
    lines.append("")

    preview = preview_lines(screen.preview_path, screen.preview)
    start, end = _visible_range(screen.cursor, len(screen.results), max(3, height - 10 - len(preview)))
    body: list[str] = []
    for i in range(start, end):
        record = screen.results[i]
        is_cur = i == screen.cursor
        open_tag, close_tag = row_style(is_cur)
        row = f"{cursor_prefix(is_cur)}{open_tag}{escape(record.path)}{close_tag}"
        if record.schema_error:
            row += "  " + styled("schema error", theme.error)
        elif record.description:
            row += "  " + styled(escape(record.description), theme.muted)
        body.append(row)
    if not screen.results:
        body.append(styled("  No matches", theme.muted))
    _scroll_indicators(lines, body, start, end, len(screen.results))
    if preview:
        lines.append("")
        lines.extend(preview)

    lines.append("")
    lines.append(styled(escape(status), theme.muted))
    lines.append(keybinding_hint(["type to filter", "↑↓ nav", "↵ open", "esc back"]))
    return "\n".join(lines)


def _render_form(screen: FieldInput) -> str:
    theme = get_theme()
    schema = screen.schema
    lines = [header(escape(schema.name), escape(schema.description)), dim_separator()]
    for i, f in enumerate(screen.fields):
        is_cur = i == screen.cursor
        open_tag, close_tag = row_style(is_cur)
        label = escape(f.prompt or f.name)
        if f.required:
            label += styled("*", theme.warning)
        if f.name in screen.queued:
            value = styled("(queued)", theme.muted)
        else:
            raw = screen.values.get(f.name, "")
            if raw:
                value = escape(raw)
            elif f.default:
                value = styled(escape(f.default), theme.muted)
            else:
                value = ""
            if is_cur:
                value += styled("▏", theme.accent)
        hint = ""
        if f.choices:
            hint = "  " + styled(escape(" | ".join(f.choices)), theme.muted)
        elif f.type == FieldType.BOOL:
            hint = "  " + styled("true | false", theme.muted)
        elif f.type == FieldType.NUMBER:
            hint = "  " + styled("number", theme.muted)
        lines.append(f"{cursor_prefix(is_cur)}{open_tag}{label}{close_tag}: {value}{hint}")

    if schema.queue is not None:
        lines.append("")
        queue = schema.queue
        if queue.matrix:
            count = 1
            for entry in queue.matrix:
                count *= len(entry.values)
        else:
            count = len(queue.cases)
        lines.append(styled(f"  Queue: {count} run(s)", theme.info))

    lines.append("")
    if screen.error:
        lines.append(styled(escape(screen.error), theme.error))
    lines.append(keybinding_hint(["tab/↑↓ field", "←→ cycle", "↵ run", "esc back"]))
    return "\n".join(lines)


def _render_running(screen: Running) -> str:
    theme = get_theme()
    elapsed = max(0.0, time.time() - screen.started_at)
    frame = SPINNER[int(elapsed * 10) % len(SPINNER)]
    lines = [header(escape(screen.title), escape(screen.script.name)), dim_separator()]
    current = len(screen.done) + 1
    progress = f"{min(current, screen.total)}/{screen.total}" if screen.total > 1 else ""
    lines.append(f"  {styled(frame, theme.accent)} Running {progress}  " + styled(f"{elapsed:.1f}s", theme.muted))
    for item in screen.done:
        outcome = item.result.outcome
        label = escape(item.request.label or item.request.script.name)
        lines.append(f"    {styled(str(outcome), outcome_style(outcome))}  {label}")
    lines.append("")
    if screen.cancel_requested:
        lines.append(styled("  Cancelling...", theme.warning))
        lines.append(keybinding_hint([]))
    else:
        lines.append(keybinding_hint(["c/esc cancel"]))
    return "\n".join(lines)


def _render_result(screen: RunResult, height: int) -> str:
    theme = get_theme()
    report = screen.report
    if report.cancelled:
        status = styled("cancelled", theme.warning)
    elif report.success:
        status = styled("success", theme.success)
    else:
        status = styled("failed", theme.error)
    lines = [header(escape(screen.title), escape(screen.script.name)), dim_separator()]
    lines.append(f"  Status: {status}")
    if screen.command:
        lines.append(styled(f"  $ {escape(screen.command)}", theme.muted))
    lines.append("")

    body, scroll = _window(result_lines(report), screen.scroll, max(3, height - 8))
    screen.scroll = scroll
    lines.extend(escape(text) for text in body)
    lines.append("")
    lines.append(keybinding_hint(["↵/esc back", "h history"], include_nav=True))
    return "\n".join(lines)


def _render_history(screen: History, height: int) -> str:
    theme = get_theme()
    lines = [header("History"), dim_separator()]
    record = screen.selected
    if screen.detail and record is not None:
        lines.append(f"  {escape(record.script)}  " + styled(format_timestamp(record.timestamp), theme.muted))
        lines.append(f"  Outcome: {styled(str(record.outcome), outcome_style(record.outcome))}")
        if record.args:
            lines.append(styled("  Args: " + escape(" ".join(record.args)), theme.muted))
        lines.append("")
        body, scroll = _window(format_output(record).splitlines(), screen.scroll, max(3, height - 9))
        screen.scroll = scroll
        lines.extend(escape(text) for text in body)
        lines.append("")
        lines.append(keybinding_hint(["esc/← list", "q back"], include_nav=True))
        return "\n".join(lines)

    start, end = _visible_range(screen.cursor, len(screen.records), max(3, height - 6))
    body: list[str] = []
    for i in range(start, end):
        item = screen.records[i]
        is_cur = i == screen.cursor
        open_tag, close_tag = row_style(is_cur)
        when = styled(format_timestamp(item.timestamp), theme.muted)
        outcome = styled(str(item.outcome), outcome_style(item.outcome))
        label = " " + escape(f"[{item.label}]") if item.label else ""
        body.append(f"{cursor_prefix(is_cur)}{when}  {open_tag}{escape(item.script)}{close_tag}{label}  {outcome}")
    if not screen.records:
        body.append(styled("  No runs recorded yet", theme.muted))
    _scroll_indicators(lines, body, start, end, len(screen.records))
    lines.append("")
    lines.append(keybinding_hint(["↵ details", "esc back"], include_nav=True))
    return "\n".join(lines)


def _render_environments(screen: Environments) -> str:
    theme = get_theme()
    lines = [header("Environments", f"active: {escape(screen.active or 'none')}"), dim_separator()]
    for i, name in enumerate(screen.names):
        is_cur = i == screen.cursor
        open_tag, close_tag = row_style(is_cur)
        mark = styled("●", theme.success) if name == screen.active else " "
        lines.append(f"{cursor_prefix(is_cur)}{mark} {open_tag}{escape(name)}{close_tag}")
    if not screen.names:
        lines.append(styled("  No environment files in .omaken/envs", theme.muted))
    if screen.preview:
        lines.append("")
        for key, value in screen.preview:
            lines.append(f"    {styled(escape(key), theme.info)} = {escape(value)}")
    lines.append("")
    if screen.error:
        lines.append(styled(escape(screen.error), theme.error))
    lines.append(keybinding_hint(["↵ activate", "d deactivate", "esc back"], include_nav=True))
    return "\n".join(lines)


def _render_error(screen: Error) -> str:
    theme = get_theme()
    lines = [header(styled(escape(screen.title), theme.error)), dim_separator()]
    lines.extend(f"  {escape(text)}" for text in screen.message.splitlines() or [""])
    if screen.hint:
        lines.append("")
        lines.append(styled(f"  {escape(screen.hint)}", theme.info))
    lines.append("")
    if screen.fatal:
        lines.append(keybinding_hint(["↵/q quit"]))
    else:
        lines.append(keybinding_hint(["↵ back", "q quit"]))
    return "\n".join(lines)


def render_markup(engine, height: int | None = None) -> str:
    """Markup for the engine's current screen."""
    height = height or _get_terminal_height()
    screen = engine.screen
    status = engine.status_text()
    if isinstance(screen, ScriptSelect):
        return _render_browser(screen, engine.workspace.root, status, height)
    if isinstance(screen, Search):
        return _render_search(screen, status, height)
    if isinstance(screen, FieldInput):
        return _render_form(screen)
    if isinstance(screen, Running):
        return _render_running(screen)
    if isinstance(screen, RunResult):
        return _render_result(screen, height)
    if isinstance(screen, History):
        return _render_history(screen, height)
    if isinstance(screen, Environments):
        return _render_environments(screen)
    return _render_error(screen)


def render(engine, height: int | None = None) -> Text:
    return Text.from_markup(render_markup(engine, height))
