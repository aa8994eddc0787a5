"""Runtime resolution: file extension to interpreter command line.

The set of runtimes is closed (bash, PowerShell, Python), so they are a
lookup table keyed by extension rather than a plugin hierarchy.
"""

from __future__ import annotations

import shlex
import shutil
import sys
from enum import Enum
from pathlib import Path

from .types import ExecutionRequest


class ScriptKind(str, Enum):
    """Runtimes a script can be written for."""

    BASH = "bash"
    POWERSHELL = "powershell"
    PYTHON = "python"

    def __str__(self) -> str:
        return self.value


EXTENSION_KINDS: dict[str, ScriptKind] = {
    ".bash": ScriptKind.BASH,
    ".sh": ScriptKind.BASH,
    ".ps1": ScriptKind.POWERSHELL,
    ".py": ScriptKind.PYTHON,
}

SUPPORTED_EXTENSIONS = tuple(EXTENSION_KINDS)

# Comment prefixes that may precede schema marker lines, per runtime.
COMMENT_PREFIXES: dict[ScriptKind, tuple[str, ...]] = {
    ScriptKind.BASH: ("#",),
    ScriptKind.POWERSHELL: ("#", ";"),
    ScriptKind.PYTHON: ("#",),
}

_STANDARD_PATHS: dict[str, list[str]] = {
    "bash": ["/bin/bash", "/usr/bin/bash", "/usr/local/bin/bash", "/opt/homebrew/bin/bash"],
    "python3": ["/usr/bin/python3", "/usr/local/bin/python3", "/opt/homebrew/bin/python3"],
    "pwsh": ["/usr/bin/pwsh", "/usr/local/bin/pwsh", "/opt/homebrew/bin/pwsh"],
}


def script_kind(path: Path) -> ScriptKind | None:
    """Runtime for a script path, or None if the extension is unsupported."""
    return EXTENSION_KINDS.get(path.suffix.lower())


def is_script(path: Path) -> bool:
    return script_kind(path) is not None


def _is_windows(platform: str | None) -> bool:
    return (platform or sys.platform).startswith("win")


def interpreter_name(kind: ScriptKind, platform: str | None = None) -> str:
    """Interpreter program name for a runtime on the given platform."""
    windows = _is_windows(platform)
    if kind == ScriptKind.BASH:
        return "bash"
    if kind == ScriptKind.POWERSHELL:
        return "powershell" if windows else "pwsh"
    return "python" if windows else "python3"


def _get_interpreter_path(interpreter: str) -> str:
    """Get an absolute interpreter path.

    Falls back to known standard locations if not found on PATH.
    """
    path = shutil.which(interpreter)
    if path:
        return path

    for standard_path in _STANDARD_PATHS.get(interpreter, []):
        if Path(standard_path).exists():
            return standard_path

    raise FileNotFoundError(
        f"Interpreter '{interpreter}' not found in PATH or standard locations. "
        f"Checked: {_STANDARD_PATHS.get(interpreter, [])}"
    )


def command_for(
    script: Path,
    platform: str | None = None,
    locate: bool = True,
) -> tuple[str, ...]:
    """Interpreter invocation for a script, without its arguments.

    Raises:
        ValueError: If the script extension is unsupported.
        FileNotFoundError: If ``locate`` is set and the interpreter is missing.
    """
    kind = script_kind(script)
    if kind is None:
        raise ValueError(f"Unsupported script type: {script.name}")

    program = interpreter_name(kind, platform)
    if locate:
        program = _get_interpreter_path(program)

    if kind == ScriptKind.POWERSHELL:
        return (program, "-NoProfile", "-File", str(script))
    return (program, str(script))


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + value.replace("'", "''") + "'"


def quote_arg(kind: ScriptKind | None, value: str) -> str:
    """Quote one argument for display in the script's own shell dialect."""
    if kind == ScriptKind.POWERSHELL:
        return ps_quote(value)
    return shlex.quote(value)


def flatten_pairs(pairs: list[tuple[str, str]]) -> list[str]:
    """Turn normalized (flag, value) pairs into an argument vector."""
    args: list[str] = []
    for flag, value in pairs:
        args.append(flag)
        args.append(value)
    return args


def build_request(
    script: Path,
    args: list[str],
    *,
    label: str = "",
    values: dict[str, str] | None = None,
    platform: str | None = None,
    locate: bool = False,
) -> ExecutionRequest:
    """Compose an ExecutionRequest for a script and its argument vector.

    The interpreter is looked up on PATH at spawn time unless ``locate``
    is set, so a missing interpreter surfaces as a spawn error.
    """
    return ExecutionRequest(
        command=command_for(script, platform, locate=locate),
        args=tuple(args),
        cwd=script.parent,
        script=script,
        label=label,
        values=dict(values or {}),
    )


def format_command(request: ExecutionRequest, relative_to: Path | None = None) -> str:
    """Human-readable command line, quoted for the script's runtime."""
    kind = script_kind(request.script)
    script = request.script
    if relative_to is not None:
        try:
            script = script.relative_to(relative_to)
        except ValueError:
            pass
    parts = [interpreter_name(kind) if kind else request.command[0]]
    if kind == ScriptKind.POWERSHELL:
        parts.extend(["-NoProfile", "-File"])
    parts.append(quote_arg(kind, str(script)))
    parts.extend(quote_arg(kind, arg) for arg in request.args)
    return " ".join(parts)
