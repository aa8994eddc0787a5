"""Keyboard input helpers for the navigator.

Keys arrive as the strings ``readchar.readkey()`` returns; these helpers
replace repeated inline conditionals with readable function calls.
"""

from __future__ import annotations

import readchar

CTRL_C = getattr(readchar.key, "CTRL_C", "\x03")
CTRL_S = getattr(readchar.key, "CTRL_S", "\x13")
SHIFT_TAB = getattr(readchar.key, "SHIFT_TAB", "\x1b[Z")


def is_enter(key: str) -> bool:
    """Check if key is Enter/Return."""
    return key in (readchar.key.ENTER, "\r", "\n")


def is_escape(key: str) -> bool:
    """Check if key is Escape (handles terminal variations)."""
    return key in (readchar.key.ESC, "\x1b", "\x1b\x1b")


def is_up(key: str, vim: bool = True) -> bool:
    """Check if key is up arrow, or vim 'k' when vim keys are enabled."""
    return key == readchar.key.UP or (vim and key == "k")


def is_down(key: str, vim: bool = True) -> bool:
    """Check if key is down arrow, or vim 'j' when vim keys are enabled."""
    return key == readchar.key.DOWN or (vim and key == "j")


def is_left(key: str) -> bool:
    return key == readchar.key.LEFT


def is_right(key: str) -> bool:
    return key == readchar.key.RIGHT


def is_backspace(key: str) -> bool:
    """Check if key is backspace (handles terminal variations)."""
    return key in (readchar.key.BACKSPACE, "\x7f", "\b")


def is_tab(key: str) -> bool:
    return key in (readchar.key.TAB, "\t")


def is_shift_tab(key: str) -> bool:
    return key == SHIFT_TAB


def is_ctrl_c(key: str) -> bool:
    return key in (CTRL_C, "\x03")


def is_ctrl_s(key: str) -> bool:
    return key in (CTRL_S, "\x13")


def is_printable(key: str) -> bool:
    """Single printable character suitable for text entry."""
    return len(key) == 1 and key.isprintable()
