"""Environment-default files in ``.omaken/envs``.

Each file holds ``KEY=value`` lines; the file named in ``active``
supplies prefilled values for form fields, matched case-insensitively
on the field name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .errors import EnvFileError

logger = logging.getLogger(__name__)

ACTIVE_FILENAME = "active"
MASK = "***"

_SENSITIVE_TOKENS = ("password", "secret", "token", "key", "api", "private", "cred")


@dataclass
class EnvironmentConfig:
    envs_dir: Path
    active: str | None = None
    defaults: dict[str, str] = field(default_factory=dict)


def _is_comment(line: str) -> bool:
    return not line or line.startswith("#") or line.startswith(";")


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(token in lower for token in _SENSITIVE_TOKENS)


def parse_env_text(text: str) -> list[tuple[str, str]]:
    """Parse ``KEY=value`` lines, skipping comments and ``export`` prefixes."""
    entries = []
    for line in text.splitlines():
        stripped = line.strip()
        if _is_comment(stripped):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export "):].strip()
        key, _, raw_value = stripped.partition("=")
        key = key.strip()
        if not key:
            continue
        entries.append((key, _strip_quotes(raw_value).strip()))
    return entries


def _read(path: Path) -> str:
    try:
        return path.read_text()
    except OSError as e:
        raise EnvFileError(f"Failed to read environment file {path}: {e}") from e


def load_preview(path: Path) -> list[tuple[str, str]]:
    """Entries of an env file with sensitive values masked."""
    return [
        (key, MASK if value and is_sensitive_key(key) else value)
        for key, value in parse_env_text(_read(path))
    ]


def load_defaults(path: Path) -> dict[str, str]:
    """Non-empty values keyed by lowercased name."""
    return {key.lower(): value for key, value in parse_env_text(_read(path)) if value}


def list_env_files(envs_dir: Path) -> list[str]:
    try:
        paths = list(envs_dir.iterdir())
    except FileNotFoundError:
        return []
    except OSError as e:
        raise EnvFileError(f"Failed to read environments dir {envs_dir}: {e}") from e
    return sorted(p.name for p in paths if p.is_file() and p.name != ACTIVE_FILENAME)


def active_name(envs_dir: Path) -> str | None:
    path = envs_dir / ACTIVE_FILENAME
    try:
        text = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise EnvFileError(f"Failed to read active environment {path}: {e}") from e
    for line in text.splitlines():
        stripped = line.strip()
        if not _is_comment(stripped):
            return stripped
    return None


def load_environment_config(envs_dir: Path) -> EnvironmentConfig:
    """Active environment name and its defaults."""
    active = active_name(envs_dir)
    defaults: dict[str, str] = {}
    if active is not None:
        path = envs_dir / active
        if not path.is_file():
            raise EnvFileError(f"Active environment not found: {path}")
        defaults = load_defaults(path)
    return EnvironmentConfig(envs_dir=envs_dir, active=active, defaults=defaults)


def set_active(envs_dir: Path, name: str | None) -> None:
    """Point ``active`` at an env file, or clear it when name is None."""
    active_path = envs_dir / ACTIVE_FILENAME
    try:
        envs_dir.mkdir(parents=True, exist_ok=True)
        if name is None:
            active_path.unlink(missing_ok=True)
            logger.debug("Cleared active environment")
            return
        if not (envs_dir / name).is_file():
            raise EnvFileError(f"Environment file not found: {envs_dir / name}")
        active_path.write_text(f"{name}\n")
    except OSError as e:
        raise EnvFileError(f"Failed to update active environment {active_path}: {e}") from e
    logger.debug("Active environment set to %s", name)


def prefill(defaults: dict[str, str], field_names: list[str]) -> dict[str, str]:
    """Initial form values for fields that have an environment default."""
    return {name: defaults[name.lower()] for name in field_names if name.lower() in defaults}
