"""Workspace root resolution and on-disk layout.

The root is resolved once per process start from an ordered candidate
chain: explicit override, debug-local tree, primary default, legacy
defaults. Resolution is a pure function of its inputs so it can be
tested without touching the real environment.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import write_default_config
from .errors import WorkspaceError
from .runtime import SUPPORTED_EXTENSIONS

logger = logging.getLogger(__name__)

PRIMARY_DIR_ENV = "OMAKURE_SCRIPTS_DIR"
LEGACY_DIR_ENVS = ("OVERTURE_SCRIPTS_DIR", "CLOUD_MGMT_SCRIPTS_DIR")
DEBUG_ENV = "OMAKURE_DEBUG"

PRIMARY_DIR_NAME = "omakure-scripts"
LEGACY_DIR_NAMES = ("overture-scripts", "cloud-mgmt-scripts")

OMAKEN_DIRNAME = ".omaken"
HISTORY_DIRNAME = ".history"
ENVS_DIRNAME = "envs"
CONFIG_FILENAME = "omakure.yaml"
INDEX_FILENAME = "search-index.json"
LOG_FILENAME = "omakure.log"
WIDGET_FILENAME = "index.lua"

_FALSY = {"", "0", "false", "no", "off"}


def is_truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() not in _FALSY


def source_checkout() -> Path:
    """Directory of the source checkout this package was loaded from."""
    return Path(__file__).resolve().parents[2]


def default_root(home: Path) -> Path:
    return home / "Documents" / PRIMARY_DIR_NAME


def explicit_override(env: Mapping[str, str]) -> Path | None:
    """Return the override path from the primary or legacy env vars."""
    for name in (PRIMARY_DIR_ENV, *LEGACY_DIR_ENVS):
        value = env.get(name, "").strip()
        if value:
            return Path(os.path.expanduser(value))
    return None


def resolution_candidates(
    env: Mapping[str, str],
    home: Path,
    checkout: Path | None = None,
) -> list[Path]:
    """Build the ordered candidate list for the workspace root.

    An explicit override short-circuits the chain: it is the only
    candidate, whether or not it exists. Otherwise the chain is the
    debug-local tree (only when debug is on), the primary default and
    the legacy defaults.
    """
    override = explicit_override(env)
    if override is not None:
        return [override]

    candidates: list[Path] = []
    if is_truthy(env.get(DEBUG_ENV)) and checkout is not None:
        candidates.append(checkout / "scripts")
    documents = home / "Documents"
    candidates.append(documents / PRIMARY_DIR_NAME)
    candidates.extend(documents / name for name in LEGACY_DIR_NAMES)
    return candidates


def pick_root(candidates: list[Path], fallback: Path) -> Path:
    """Return the first candidate that is an existing directory, else fallback."""
    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    return fallback


def resolve_root_path(
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
    checkout: Path | None = None,
) -> Path:
    """Resolve the workspace root path without checking that it exists."""
    if env is None:
        env = os.environ
    if home is None:
        home = Path.home()
    if checkout is None:
        checkout = source_checkout()
    candidates = resolution_candidates(env, home, checkout)
    fallback = candidates[0] if explicit_override(env) else default_root(home)
    root = pick_root(candidates, fallback)
    logger.debug("Workspace candidates %s -> %s", candidates, root)
    return root


def resolve_workspace(
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
    checkout: Path | None = None,
) -> Workspace:
    """Resolve and validate the workspace root.

    Raises:
        WorkspaceError: If the resolved root is not an existing directory.
    """
    root = resolve_root_path(env, home, checkout)
    workspace = Workspace(root)
    workspace.validate()
    return workspace


@dataclass(frozen=True)
class Workspace:
    """Paths inside a workspace root."""

    root: Path

    @property
    def omaken_dir(self) -> Path:
        return self.root / OMAKEN_DIRNAME

    @property
    def envs_dir(self) -> Path:
        return self.omaken_dir / ENVS_DIRNAME

    @property
    def history_dir(self) -> Path:
        return self.root / HISTORY_DIRNAME

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILENAME

    @property
    def index_path(self) -> Path:
        return self.history_dir / INDEX_FILENAME

    @property
    def log_path(self) -> Path:
        return self.history_dir / LOG_FILENAME

    def validate(self) -> None:
        if not self.root.exists():
            raise WorkspaceError(
                f"Scripts directory not found: {self.root}. "
                f"Create it, run 'omakure init <script>' or set {PRIMARY_DIR_ENV}.",
                expected=str(self.root),
            )
        if not self.root.is_dir():
            raise WorkspaceError(
                f"Scripts path is not a directory: {self.root}",
                expected=str(self.root),
            )
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise WorkspaceError(
                f"Scripts directory is not readable: {self.root}",
                expected=str(self.root),
            )

    def ensure_layout(self) -> None:
        """Create the root, hidden subtrees and a default config file."""
        self.root.mkdir(parents=True, exist_ok=True)
        self.omaken_dir.mkdir(parents=True, exist_ok=True)
        self.envs_dir.mkdir(parents=True, exist_ok=True)
        self.history_dir.mkdir(parents=True, exist_ok=True)
        if not self.config_path.exists():
            write_default_config(self.config_path)

    def relative(self, path: Path) -> Path:
        """Path relative to the root, or the path itself if outside it."""
        try:
            return path.resolve().relative_to(self.root.resolve())
        except ValueError:
            return path

    def resolve_script(self, name: str) -> Path | None:
        """Resolve a workspace-relative script name, extension optional."""
        raw = Path(os.path.expanduser(name))
        candidate = raw if raw.is_absolute() else self.root / raw
        if candidate.is_file():
            return candidate
        if not candidate.suffix:
            for ext in SUPPORTED_EXTENSIONS:
                with_ext = candidate.with_name(candidate.name + ext)
                if with_ext.is_file():
                    return with_ext
        return None
