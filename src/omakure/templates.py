"""Script templates for ``omakure init``."""

from __future__ import annotations

import re
from pathlib import Path, PurePath

from .errors import OmakureError
from .runtime import SUPPORTED_EXTENSIONS, ScriptKind, script_kind

_ID_PLACEHOLDER = "__SCRIPT_ID__"

BASH_TEMPLATE = """#!/usr/bin/env bash
set -euo pipefail

# OMAKURE_SCHEMA_START
# {
#   "Name": "__SCRIPT_ID__",
#   "Description": "Describe what this script does.",
#   "Fields": [
#     {
#       "Name": "target",
#       "Prompt": "Target (optional)",
#       "Type": "string",
#       "Order": 1,
#       "Required": false,
#       "Arg": "--target"
#     }
#   ]
# }
# OMAKURE_SCHEMA_END

TARGET=""

while [[ $# -gt 0 ]]; do
  case "$1" in
    --target)
      TARGET="${2:-}"
      shift 2
      ;;
    *)
      echo "Unknown arg: $1" >&2
      exit 1
      ;;
  esac
done

echo "__SCRIPT_ID__: target=${TARGET}"
"""

POWERSHELL_TEMPLATE = """# OMAKURE_SCHEMA_START
# {
#   "Name": "__SCRIPT_ID__",
#   "Description": "Describe what this script does.",
#   "Fields": [
#     {
#       "Name": "target",
#       "Prompt": "Target (optional)",
#       "Type": "string",
#       "Order": 1,
#       "Required": false,
#       "Arg": "-Target"
#     }
#   ]
# }
# OMAKURE_SCHEMA_END

param(
    [string]$Target = ""
)

$ErrorActionPreference = "Stop"

Write-Output "__SCRIPT_ID__: target=$Target"
"""

PYTHON_TEMPLATE = """#!/usr/bin/env python3
# OMAKURE_SCHEMA_START
# {
#   "Name": "__SCRIPT_ID__",
#   "Description": "Describe what this script does.",
#   "Fields": [
#     {
#       "Name": "target",
#       "Prompt": "Target (optional)",
#       "Type": "string",
#       "Order": 1,
#       "Required": false,
#       "Arg": "--target"
#     }
#   ]
# }
# OMAKURE_SCHEMA_END

import argparse


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--target", default="")
    args = parser.parse_args()
    print(f"__SCRIPT_ID__: target={args.target}")


if __name__ == "__main__":
    main()
"""

_TEMPLATES: dict[ScriptKind, str] = {
    ScriptKind.BASH: BASH_TEMPLATE,
    ScriptKind.POWERSHELL: POWERSHELL_TEMPLATE,
    ScriptKind.PYTHON: PYTHON_TEMPLATE,
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def script_id(path: PurePath) -> str:
    """Schema Name derived from a file stem, e.g. ``rg-list`` -> ``rg_list``."""
    return _NON_ALNUM_RE.sub("_", path.stem.lower()).strip("_")


def get_template(kind: ScriptKind, name: str) -> str:
    return _TEMPLATES[kind].replace(_ID_PLACEHOLDER, name)


def script_relative_path(name: str) -> Path:
    """Validate a workspace-relative script name, defaulting to ``.bash``.

    Raises:
        OmakureError: For absolute paths, parent components or unsupported
            extensions.
    """
    name = name.strip()
    if not name:
        raise OmakureError("Script name cannot be empty")
    path = Path(name)
    if path.is_absolute() or path.anchor:
        raise OmakureError("Script name must be a relative path")
    if ".." in path.parts:
        raise OmakureError("Script name must not include parent or root components")
    if not path.suffix:
        path = path.with_name(path.name + ".bash")
    if script_kind(path) is None:
        raise OmakureError(f"Unsupported extension. Allowed: {', '.join(SUPPORTED_EXTENSIONS)}")
    return path


def create_script(root: Path, name: str) -> Path:
    """Write a new script from its runtime template. Returns its path."""
    relative = script_relative_path(name)
    path = root / relative
    if path.exists():
        raise OmakureError(f"Script already exists: {path}")
    ident = script_id(relative)
    if not ident:
        raise OmakureError("Script name must contain letters or numbers")
    kind = script_kind(relative)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_template(kind, ident))
    path.chmod(0o755)
    return path
