"""Semantic style helpers for navigator screens."""

from __future__ import annotations

import os
from dataclasses import dataclass

from ..types import Outcome

SEPARATOR_WIDTH = 50


@dataclass(frozen=True)
class TuiTheme:
    """Semantic palette tokens for Rich markup."""

    name: str
    accent: str
    info: str
    success: str
    warning: str
    error: str
    muted: str


_BASE_THEME = TuiTheme(
    name="default",
    accent="color(130)",  # warm rust
    info="color(24)",  # deep blue
    success="color(28)",  # dark green
    warning="color(136)",  # ochre
    error="color(124)",  # brick red
    muted="grey50",
)

_THEMES: dict[str, TuiTheme] = {
    "default": _BASE_THEME,
    "night": TuiTheme(
        name="night",
        accent="color(60)",  # indigo
        info="color(31)",
        success="color(29)",
        warning="color(101)",
        error="color(124)",
        muted="grey50",
    ),
    "mono": TuiTheme(
        name="mono",
        accent="bold white",
        info="white",
        success="white",
        warning="bold white",
        error="bold white",
        muted="grey50",
    ),
}

_current_theme: TuiTheme = _BASE_THEME


def set_theme(name: str | None = None) -> TuiTheme:
    """Select the active theme by name (or the OMAKURE_THEME env var)."""
    global _current_theme

    key = (name or os.environ.get("OMAKURE_THEME") or "default").strip().lower()
    _current_theme = _THEMES.get(key, _BASE_THEME)
    return _current_theme


def get_theme() -> TuiTheme:
    """Return current active theme."""
    return _current_theme


def styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def dim_separator(width: int = SEPARATOR_WIDTH) -> str:
    """Return a standard muted separator line."""
    return styled("─" * width, get_theme().muted)


def cursor_prefix(is_current: bool) -> str:
    """Return the standard row cursor prefix."""
    if not is_current:
        return "  "
    return styled("❯", get_theme().accent) + " "


def header(title: str, subtitle: str = "") -> str:
    theme = get_theme()
    line = styled(title, f"bold {theme.accent}")
    if subtitle:
        line += "  " + styled(subtitle, theme.muted)
    return line


def row_style(is_current: bool) -> tuple[str, str]:
    """Return base row style tags."""
    return ("[bold]", "[/bold]") if is_current else ("", "")


def outcome_style(outcome: Outcome) -> str:
    theme = get_theme()
    if outcome == Outcome.SUCCESS:
        return theme.success
    if outcome in (Outcome.CANCELLED, Outcome.SKIPPED):
        return theme.warning
    return theme.error


def keybinding_hint(actions: list[str], *, include_nav: bool = False) -> str:
    """Return a standardized dim keybinding hint line."""
    parts = list(actions)
    if include_nav:
        parts.insert(0, "↑↓/jk nav")
    return styled(" · ".join(parts), get_theme().muted)
