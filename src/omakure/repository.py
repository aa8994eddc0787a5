"""Entry repository: walks the workspace tree for scripts and folders."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

from .runtime import is_script
from .types import Entry, EntryKind
from .workspace import ENVS_DIRNAME, HISTORY_DIRNAME, OMAKEN_DIRNAME, WIDGET_FILENAME

logger = logging.getLogger(__name__)

_SKIP_DIRS = {HISTORY_DIRNAME, ".git"}


def should_skip_dir(path: Path) -> bool:
    """Directories never listed: history, git metadata, env-default files."""
    if path.name in _SKIP_DIRS:
        return True
    return path.name == ENVS_DIRNAME and path.parent.name == OMAKEN_DIRNAME


def _sort_key(entry: Entry) -> tuple[int, str]:
    return (0 if entry.is_dir else 1, entry.name.lower())


class EntryRepository:
    """Lists entries under a workspace root.

    Entries are recomputed on every call; nothing is cached.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _entry(self, path: Path, kind: EntryKind) -> Entry:
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            relative = path
        has_widget = kind == EntryKind.DIRECTORY and (path / WIDGET_FILENAME).is_file()
        return Entry(path=path, relative=relative, kind=kind, has_widget=has_widget)

    def list_entries(self, directory: Path) -> list[Entry]:
        """Immediate children of a directory: folders first, then scripts.

        A missing directory lists as empty. Other OS errors propagate.
        """
        entries: list[Entry] = []
        try:
            children = list(directory.iterdir())
        except FileNotFoundError:
            return entries

        for path in children:
            if path.is_dir():
                if should_skip_dir(path):
                    continue
                entries.append(self._entry(path, EntryKind.DIRECTORY))
            elif path.is_file() and is_script(path):
                entries.append(self._entry(path, EntryKind.SCRIPT))

        entries.sort(key=_sort_key)
        return entries

    def iter_scripts(self) -> Iterator[Path]:
        """All runnable scripts under the root, including the .omaken tree."""
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=self._walk_error):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames if not should_skip_dir(current / d)
            )
            for filename in sorted(filenames):
                path = current / filename
                if is_script(path):
                    yield path

    def list_scripts(self) -> list[Path]:
        """All runnable scripts, sorted by workspace-relative path."""
        return sorted(self.iter_scripts(), key=lambda p: p.relative_to(self.root).as_posix())

    def has_widget(self, directory: Path) -> bool:
        return (directory / WIDGET_FILENAME).is_file()

    @staticmethod
    def _walk_error(err: OSError) -> None:
        logger.warning("Skipping unreadable directory: %s", err)
