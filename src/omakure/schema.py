"""Schema discovery for workspace scripts.

Two strategies, tried in order:
1. Static scan: a JSON block between OMAKURE_SCHEMA_START and
   OMAKURE_SCHEMA_END comment lines. Never executes the script.
2. Dynamic discovery: run the script with SCHEMA_MODE=1 and read the
   schema JSON from its stdout.

Scripts without a schema stay runnable headlessly; they are just not
form-driven in the navigator.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import SchemaError
from .runtime import COMMENT_PREFIXES, command_for, script_kind
from .types import Case, Field, FieldType, MatrixEntry, Output, Queue, Schema

logger = logging.getLogger(__name__)

START_MARKER = "OMAKURE_SCHEMA_START"
END_MARKER = "OMAKURE_SCHEMA_END"
SCHEMA_MODE_ENV = "SCHEMA_MODE"

_TYPE_ALIASES = {
    "string": FieldType.STRING,
    "str": FieldType.STRING,
    "number": FieldType.NUMBER,
    "bool": FieldType.BOOL,
    "boolean": FieldType.BOOL,
}


@dataclass(frozen=True)
class Discovery:
    """Result of discovering one script's schema."""

    schema: Schema | None = None
    error: str | None = None
    source: str | None = None

    @property
    def ok(self) -> bool:
        return self.schema is not None


# ── wire parsing ──────────────────────────────────────────────────────────


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _require_str(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SchemaError(f"{where}: '{key}' must be a non-empty string")
    return value


def _parse_field(data: Any, index: int) -> Field:
    where = f"Fields[{index}]"
    if not isinstance(data, dict):
        raise SchemaError(f"{where}: expected an object")
    name = _require_str(data, "Name", where)

    raw_type = data.get("Type")
    if not isinstance(raw_type, str):
        raise SchemaError(f"{where}: 'Type' is required")
    field_type = _TYPE_ALIASES.get(raw_type.strip().lower())
    if field_type is None:
        raise SchemaError(f"{where}: unknown Type '{raw_type}'")

    order = data.get("Order", 0)
    if isinstance(order, bool) or not isinstance(order, int):
        raise SchemaError(f"{where}: 'Order' must be an integer")

    required = data.get("Required", False)
    if not isinstance(required, bool):
        raise SchemaError(f"{where}: 'Required' must be true or false")

    prompt = data.get("Prompt")
    arg = data.get("Arg")
    default = data.get("Default")
    choices = data.get("Choices")
    if choices is not None:
        if not isinstance(choices, list):
            raise SchemaError(f"{where}: 'Choices' must be a list")
        choices = tuple(_stringify(c) for c in choices)

    field = Field(
        name=name,
        prompt=prompt if isinstance(prompt, str) and prompt else name,
        type=field_type,
        order=order,
        required=required,
        arg=arg if isinstance(arg, str) and arg else f"--{name}",
        default=None if default is None else _stringify(default),
        choices=choices,
    )
    if field.choices is not None and field.default is not None:
        if field.default not in field.choices:
            raise SchemaError(f"{where}: Default '{field.default}' is not one of Choices")
    return field


def _parse_matrix(data: Any) -> tuple[MatrixEntry, ...]:
    if isinstance(data, dict):
        data = data.get("Values")
    if not isinstance(data, list):
        raise SchemaError("Queue.Matrix: expected a list")
    entries = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise SchemaError(f"Queue.Matrix[{i}]: expected an object")
        values = item.get("Values")
        if not isinstance(values, list):
            raise SchemaError(f"Queue.Matrix[{i}]: 'Values' must be a list")
        entries.append(
            MatrixEntry(
                name=_require_str(item, "Name", f"Queue.Matrix[{i}]"),
                values=tuple(_stringify(v) for v in values),
            )
        )
    return tuple(entries)


def _parse_cases(data: Any) -> tuple[Case, ...]:
    if not isinstance(data, list):
        raise SchemaError("Queue.Cases: expected a list")
    cases = []
    for i, item in enumerate(data):
        where = f"Queue.Cases[{i}]"
        if not isinstance(item, dict):
            raise SchemaError(f"{where}: expected an object")
        raw_values = item.get("Values", [])
        if not isinstance(raw_values, list):
            raise SchemaError(f"{where}: 'Values' must be a list")
        pairs = []
        for j, pair in enumerate(raw_values):
            if not isinstance(pair, dict) or "Value" not in pair:
                raise SchemaError(f"{where}.Values[{j}]: expected {{Name, Value}}")
            pairs.append((_require_str(pair, "Name", f"{where}.Values[{j}]"), _stringify(pair["Value"])))
        name = item.get("Name")
        cases.append(Case(name=name if isinstance(name, str) and name else None, values=tuple(pairs)))
    return tuple(cases)


def _parse_queue(data: Any) -> Queue | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise SchemaError("Queue: expected an object")
    if "Matrix" in data and "Cases" in data:
        raise SchemaError("Queue: use either Matrix or Cases, not both")
    if "Matrix" in data:
        return Queue(matrix=_parse_matrix(data["Matrix"]))
    if "Cases" in data:
        return Queue(cases=_parse_cases(data["Cases"]))
    raise SchemaError("Queue: expected Matrix or Cases")


def schema_from_dict(data: Any) -> Schema:
    """Build a Schema from decoded wire JSON.

    Raises:
        SchemaError: If the object does not describe a valid schema.
    """
    if not isinstance(data, dict):
        raise SchemaError("Schema must be a JSON object")
    name = _require_str(data, "Name", "Schema")

    raw_fields = data.get("Fields", [])
    if raw_fields is None:
        raw_fields = []
    if not isinstance(raw_fields, list):
        raise SchemaError("Schema: 'Fields' must be a list")
    fields = tuple(_parse_field(item, i) for i, item in enumerate(raw_fields))

    seen: set[str] = set()
    for f in fields:
        if f.name in seen:
            raise SchemaError(f"Schema: duplicate field name '{f.name}'")
        seen.add(f.name)

    outputs = []
    for i, item in enumerate(data.get("Outputs") or []):
        if not isinstance(item, dict):
            raise SchemaError(f"Outputs[{i}]: expected an object")
        outputs.append(
            Output(name=_require_str(item, "Name", f"Outputs[{i}]"), type=str(item.get("Type", "string")))
        )

    tags = data.get("Tags") or []
    if not isinstance(tags, list):
        raise SchemaError("Schema: 'Tags' must be a list")

    description = data.get("Description")
    return Schema(
        name=name,
        description=description if isinstance(description, str) else "",
        tags=tuple(str(t) for t in tags),
        fields=fields,
        outputs=tuple(outputs),
        queue=_parse_queue(data.get("Queue")),
    )


def parse_schema(text: str) -> Schema:
    """Find the first JSON object in text that decodes into a valid Schema.

    Scripts may print banners or warnings around the JSON, so every
    ``{`` is tried as a starting point.
    """
    decoder = json.JSONDecoder()
    last_error: str | None = None
    start = text.find("{")
    while start != -1:
        try:
            data, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            pass
        else:
            try:
                return schema_from_dict(data)
            except SchemaError as e:
                last_error = str(e)
        start = text.find("{", start + 1)

    raise SchemaError(last_error or "Schema JSON object not found in output")


# ── static scan ───────────────────────────────────────────────────────────


def _strip_comment(line: str, prefixes: tuple[str, ...]) -> str | None:
    """Remove a comment prefix and one following space, or None if uncommented."""
    stripped = line.lstrip()
    for prefix in prefixes:
        if stripped.startswith(prefix):
            rest = stripped[len(prefix):]
            return rest[1:] if rest.startswith(" ") else rest
    return None


def extract_schema_block(text: str, prefixes: tuple[str, ...] = ("#",)) -> str | None:
    """Return the commented text between the schema markers, if present.

    Raises:
        SchemaError: If a start marker has no matching end marker.
    """
    lines = text.splitlines()
    start = None
    for i, line in enumerate(lines):
        content = _strip_comment(line, prefixes)
        if content is not None and content.strip() == START_MARKER:
            start = i
            break
    if start is None:
        return None

    body: list[str] = []
    for line in lines[start + 1:]:
        content = _strip_comment(line, prefixes)
        if content is None:
            if not line.strip():
                body.append("")
                continue
            raise SchemaError("Schema block contains an uncommented line")
        if content.strip() == END_MARKER:
            return "\n".join(body)
        body.append(content)
    raise SchemaError(f"{START_MARKER} without {END_MARKER}")


def discover_static(path: Path) -> Discovery | None:
    """Static scan. Returns None when the file has no schema block."""
    kind = script_kind(path)
    if kind is None:
        return Discovery(error=f"Unsupported script type: {path.name}")
    try:
        text = path.read_text(errors="replace")
    except OSError as e:
        return Discovery(error=f"Cannot read script: {e}")

    try:
        block = extract_schema_block(text, COMMENT_PREFIXES[kind])
        if block is None:
            return None
        data = json.loads(block)
        return Discovery(schema=schema_from_dict(data), source="static")
    except json.JSONDecodeError as e:
        return Discovery(error=f"Invalid schema JSON: {e}", source="static")
    except SchemaError as e:
        return Discovery(error=str(e), source="static")


def discover_dynamic(path: Path, timeout: float = 10) -> Discovery:
    """Run the script in discovery mode and parse its stdout."""
    try:
        command = command_for(path)
    except (ValueError, FileNotFoundError) as e:
        return Discovery(error=str(e), source="dynamic")

    env = {**os.environ, SCHEMA_MODE_ENV: "1"}
    try:
        proc = subprocess.run(
            list(command),
            cwd=path.parent,
            env=env,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return Discovery(error=f"Schema mode timed out after {timeout:g}s", source="dynamic")
    except OSError as e:
        return Discovery(error=f"Schema mode failed to start: {e}", source="dynamic")

    if proc.returncode != 0:
        detail = proc.stderr.strip() or f"exit code {proc.returncode}"
        return Discovery(error=f"Schema mode failed: {detail}", source="dynamic")

    try:
        return Discovery(schema=parse_schema(proc.stdout), source="dynamic")
    except SchemaError as e:
        return Discovery(error=str(e), source="dynamic")


def discover(path: Path, dynamic: bool = True, timeout: float = 10) -> Discovery:
    """Static first, dynamic fallback when no static block exists."""
    result = discover_static(path)
    if result is None:
        if not dynamic:
            return Discovery(error="No schema block found")
        result = discover_dynamic(path, timeout)
    if not result.ok:
        logger.debug("No schema for %s: %s", path, result.error)
    return result


class SchemaCache:
    """Per-process discovery cache keyed by script path."""

    def __init__(self, dynamic: bool = True, timeout: float = 10) -> None:
        self.dynamic = dynamic
        self.timeout = timeout
        self._results: dict[Path, Discovery] = {}
        self._lock = threading.Lock()

    def get(self, path: Path) -> Discovery:
        key = path.resolve()
        with self._lock:
            cached = self._results.get(key)
        if cached is not None:
            return cached
        result = discover(path, dynamic=self.dynamic, timeout=self.timeout)
        with self._lock:
            self._results.setdefault(key, result)
            return self._results[key]

    def invalidate(self, path: Path | None = None) -> None:
        with self._lock:
            if path is None:
                self._results.clear()
            else:
                self._results.pop(path.resolve(), None)
