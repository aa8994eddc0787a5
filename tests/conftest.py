"""Pytest fixtures for omakure tests."""

import json
from pathlib import Path

import pytest

from omakure.workspace import Workspace

SHEBANGS = {
    ".bash": "#!/usr/bin/env bash",
    ".sh": "#!/usr/bin/env bash",
    ".py": "#!/usr/bin/env python3",
    ".ps1": "",
}


def schema_block(schema: dict, prefix: str = "#") -> str:
    """Render a schema as a commented static block."""
    lines = [f"{prefix} OMAKURE_SCHEMA_START"]
    for line in json.dumps(schema, indent=2).splitlines():
        lines.append(f"{prefix} {line}")
    lines.append(f"{prefix} OMAKURE_SCHEMA_END")
    return "\n".join(lines)


@pytest.fixture
def workspace(tmp_path):
    """A throwaway workspace with the standard layout."""
    root = tmp_path / "omakure-scripts"
    ws = Workspace(root)
    ws.ensure_layout()
    return ws


@pytest.fixture
def make_script(workspace):
    """Create an executable script inside the workspace.

    ``schema`` adds a static schema block after the shebang; ``body`` is
    appended verbatim.
    """

    def _make(relative: str, body: str = "", schema: dict | None = None, prefix: str = "#") -> Path:
        path = workspace.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        parts = []
        shebang = SHEBANGS.get(path.suffix.lower(), "")
        if shebang:
            parts.append(shebang)
        if schema is not None:
            parts.append(schema_block(schema, prefix))
        parts.append(body)
        path.write_text("\n".join(parts) + "\n")
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def make_env(workspace):
    """Write an environment-default file under .omaken/envs."""

    def _make(name: str, content: str) -> Path:
        path = workspace.envs_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _make
