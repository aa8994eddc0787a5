"""Interactive navigator loop."""

from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Any

import readchar
from rich.console import Console
from rich.live import Live

from ..workspace import Workspace
from .engine import NavigationEngine
from .keys import CTRL_C
from .tasks import KeyPressed, TaskInbox
from .theme import set_theme
from .view import render

logger = logging.getLogger(__name__)

console = Console(highlight=False)

FRAME_SECONDS = 0.1


def _save_terminal() -> list | None:
    """Current tty attributes of stdin, or None off a POSIX terminal."""
    if os.name != "posix" or not sys.stdin.isatty():
        return None
    import termios

    try:
        return termios.tcgetattr(sys.stdin.fileno())
    except termios.error as e:
        logger.debug("Cannot read terminal attributes: %s", e)
        return None


def _restore_terminal(saved: list | None) -> None:
    """Put back attributes the key reader may have left in raw mode."""
    if saved is None:
        return
    import termios

    try:
        termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, saved)
    except termios.error as e:
        logger.warning("Cannot restore terminal attributes: %s", e)


def _read_keys(inbox: TaskInbox, stop: threading.Event) -> None:
    """Forward key presses to the inbox until stopped or stdin closes."""
    while not stop.is_set():
        try:
            key = readchar.readkey()
        except KeyboardInterrupt:
            key = CTRL_C
        except EOFError:
            inbox.put(KeyPressed(CTRL_C))
            return
        inbox.put(KeyPressed(key))


def run_navigator(workspace: Workspace, cfg: dict[str, Any] | None = None) -> int:
    """Run the navigator until the user quits. Returns the exit code."""
    set_theme()
    inbox = TaskInbox()
    engine = NavigationEngine(workspace, cfg, inbox=inbox)
    engine.start()

    saved = _save_terminal()
    stop = threading.Event()
    reader = threading.Thread(target=_read_keys, args=(inbox, stop), name="omakure:keys", daemon=True)
    reader.start()

    try:
        with Live("", console=console, refresh_per_second=15, transient=True, screen=True) as live:
            live.update(render(engine))
            while engine.running:
                try:
                    engine.pump(FRAME_SECONDS)
                except KeyboardInterrupt:
                    engine.dispatch(KeyPressed(CTRL_C))
                if engine.running:
                    live.update(render(engine))
    finally:
        stop.set()
        engine.shutdown()
        # Let an in-flight run observe the cancel and reap its child.
        inbox.join(timeout=5)
        # The key reader is still blocked in readkey with echo switched off.
        _restore_terminal(saved)
    return 0
