"""Flavors: script bundles cloned into ``.omaken/<name>``."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from .errors import OmakureError
from .workspace import ENVS_DIRNAME

logger = logging.getLogger(__name__)

CLONE_TIMEOUT = 120


class FlavorError(OmakureError):
    """A flavor could not be installed."""


def infer_name(url: str) -> str:
    """Folder name for a git URL: last path segment without ``.git``."""
    last = url.rstrip("/").rsplit("/", 1)[-1]
    last = last.rsplit(":", 1)[-1]
    return last.removesuffix(".git")


def list_flavors(omaken_dir: Path) -> list[str]:
    if not omaken_dir.is_dir():
        return []
    return sorted(
        p.name for p in omaken_dir.iterdir() if p.is_dir() and p.name != ENVS_DIRNAME
    )


def shallow_clone(url: str, dest: Path) -> Path:
    """Shallow clone a git repository into dest.

    Raises:
        subprocess.CalledProcessError: If git clone fails.
    """
    subprocess.run(
        ["git", "clone", "--depth", "1", "--single-branch", url, str(dest)],
        check=True,
        capture_output=True,
        text=True,
        timeout=CLONE_TIMEOUT,
    )
    return dest


def install_flavor(omaken_dir: Path, url: str, name: str | None = None) -> Path:
    """Clone a flavor. Returns the install directory."""
    if shutil.which("git") is None:
        raise FlavorError("git is required to install flavors")
    name = (name or infer_name(url)).strip()
    if not name or name in (".", "..") or "/" in name:
        raise FlavorError("Could not infer a folder name from the URL; pass --name")
    if name == ENVS_DIRNAME:
        raise FlavorError(f"'{ENVS_DIRNAME}' is reserved for environment files")
    target = omaken_dir / name
    if target.exists():
        raise FlavorError(f"Flavor already exists: {target}")

    omaken_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Cloning %s into %s", url, target)
    try:
        shallow_clone(url, target)
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
        raise FlavorError(f"git clone failed: {detail}") from e
    except subprocess.TimeoutExpired as e:
        raise FlavorError(f"git clone timed out after {CLONE_TIMEOUT}s") from e
    return target
