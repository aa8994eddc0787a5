"""Workspace configuration (omakure.yaml) and environment overrides.

The workspace config is optional: a missing or unreadable file yields
the defaults, and a partial file is deep-merged over them.
"""

from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "workspace": {"version": 1},
    "discovery": {
        "dynamic": True,
        "timeout_seconds": 10,
    },
    "widgets": {"timeout_seconds": 2},
    "queue": {"stop_on_failure": True},
    "runner": {"terminate_grace_seconds": 2},
}

DEFAULT_REPO = "This-Is-NPC/omakure"

REPO_ENVS = ("OMAKURE_REPO", "OVERTURE_REPO", "CLOUD_MGMT_REPO", "REPO")
VERSION_ENVS = ("OMAKURE_VERSION", "VERSION")

# Every variable `omakure config` reports when set.
RECOGNISED_ENV_VARS = (
    "OMAKURE_SCRIPTS_DIR",
    "OMAKURE_REPO",
    "OMAKURE_VERSION",
    "OMAKURE_DEBUG",
    "REPO",
    "VERSION",
    "OVERTURE_SCRIPTS_DIR",
    "OVERTURE_REPO",
    "CLOUD_MGMT_SCRIPTS_DIR",
    "CLOUD_MGMT_REPO",
)

_HEADER = "# Omakure workspace configuration\n"


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path) -> dict[str, Any]:
    """Load the workspace config, merged over DEFAULT_CONFIG."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            return copy.deepcopy(DEFAULT_CONFIG)
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), data)
    except FileNotFoundError:
        return copy.deepcopy(DEFAULT_CONFIG)
    except (yaml.YAMLError, OSError):
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(config_path: Path, cfg: dict[str, Any]) -> None:
    """Save the workspace config."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(_HEADER)
        yaml.dump(cfg, f, default_flow_style=False, sort_keys=False)


def write_default_config(config_path: Path) -> None:
    save_config(config_path, {"workspace": copy.deepcopy(DEFAULT_CONFIG["workspace"])})


def get_setting(cfg: Mapping[str, Any], dotted: str, default: Any = None) -> Any:
    """Look up a dotted key such as ``queue.stop_on_failure``."""
    node: Any = cfg
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def get_float(cfg: Mapping[str, Any], dotted: str) -> float:
    """Numeric setting, falling back to the default for junk values."""
    fallback = get_setting(DEFAULT_CONFIG, dotted)
    value = get_setting(cfg, dotted, fallback)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return float(fallback)
    return number if number > 0 else float(fallback)


def get_bool(cfg: Mapping[str, Any], dotted: str) -> bool:
    value = get_setting(cfg, dotted, get_setting(DEFAULT_CONFIG, dotted))
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "on")
    return bool(value)


def _first_env(env: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = env.get(name, "").strip()
        if value:
            return value
    return None


def update_source(env: Mapping[str, str] | None = None) -> tuple[str, str]:
    """Return (repo, version) for self-update, primary names first."""
    if env is None:
        env = os.environ
    repo = _first_env(env, REPO_ENVS) or DEFAULT_REPO
    version = _first_env(env, VERSION_ENVS) or "latest"
    return repo, version


def recognised_env(env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Recognised variables that are currently set, in display order."""
    if env is None:
        env = os.environ
    return {name: env[name] for name in RECOGNISED_ENV_VARS if name in env}
