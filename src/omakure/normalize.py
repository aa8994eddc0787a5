"""Input normalization and queue expansion.

Everything here is pure: no I/O, deterministic for equal inputs.

Bool fields accept (case-insensitive) ``true, t, yes, y, 1`` and
``false, f, no, n, 0`` and are coerced to ``true``/``false``. Number
fields accept anything ``float()`` does and pass the text through.
"""

from __future__ import annotations

import itertools
from collections.abc import Mapping

from .errors import InvalidChoice, InvalidType, MissingRequired, UnknownQueueField
from .types import FieldType, NamedValueSet, Queue, Schema
from .types import Field as SchemaField

TRUE_WORDS = frozenset({"true", "t", "yes", "y", "1"})
FALSE_WORDS = frozenset({"false", "f", "no", "n", "0"})


def parse_bool(value: str) -> bool | None:
    word = value.strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    return None


def normalize_value(field: SchemaField, raw: str | None) -> str | None:
    """Validate one field's raw value.

    Returns the coerced value, or None when an optional field is left
    empty and has no default.

    Raises:
        MissingRequired, InvalidChoice, InvalidType
    """
    value = (raw or "").strip()
    if not value:
        if field.default is not None:
            value = field.default
        elif field.required:
            raise MissingRequired(field.name)
        else:
            return None

    if field.choices is not None and value not in field.choices:
        raise InvalidChoice(field.name, value, field.choices)

    if field.type == FieldType.NUMBER:
        try:
            float(value)
        except ValueError:
            raise InvalidType(field.name, value, "Enter a valid number") from None
        return value

    if field.type == FieldType.BOOL:
        parsed = parse_bool(value)
        if parsed is None:
            raise InvalidType(field.name, value, "Enter true/false (or yes/no)")
        return "true" if parsed else "false"

    return value


def normalize(schema: Schema, raw_values: Mapping[str, str]) -> list[tuple[str, str]]:
    """Validate raw values against a schema.

    Returns (flag, value) pairs in field Order. Optional fields left
    empty are omitted together with their flag.
    """
    pairs: list[tuple[str, str]] = []
    for field in schema.ordered_fields():
        value = normalize_value(field, raw_values.get(field.name))
        if value is not None:
            pairs.append((field.flag, value))
    return pairs


def expand(queue: Queue) -> list[NamedValueSet]:
    """Expand a queue into ordered value sets.

    Matrix: cartesian product in nested-loop order, leftmost entry
    varying slowest. Cases: declaration order.
    """
    if queue.matrix is not None:
        if not queue.matrix:
            return []
        names = [entry.name for entry in queue.matrix]
        sets = []
        for combo in itertools.product(*(entry.values for entry in queue.matrix)):
            values = dict(zip(names, combo))
            label = ", ".join(f"{name}={value}" for name, value in values.items())
            sets.append(NamedValueSet(label=label, values=values))
        return sets

    sets = []
    for i, case in enumerate(queue.cases or (), start=1):
        sets.append(NamedValueSet(label=case.name or f"case {i}", values=dict(case.values)))
    return sets


def check_queue_fields(schema: Schema) -> None:
    """Raise UnknownQueueField if the queue names an undeclared field."""
    if schema.queue is None:
        return
    declared = {f.name for f in schema.fields}
    for name in schema.queue.field_names:
        if name not in declared:
            raise UnknownQueueField(name)


def parameter_sets(
    schema: Schema,
    raw_values: Mapping[str, str],
) -> list[tuple[NamedValueSet, list[tuple[str, str]]]]:
    """Expand the schema's queue over raw values and validate every set.

    Without a queue this is a single unlabeled set. All sets are
    validated before returning, so a bad combination rejects the whole
    batch before anything runs.
    """
    check_queue_fields(schema)
    if schema.queue is None:
        sets = [NamedValueSet(label="", values={})]
    else:
        sets = expand(schema.queue)

    validated = []
    for value_set in sets:
        merged = {**raw_values, **value_set.values}
        effective = NamedValueSet(label=value_set.label, values=effective_values(schema, merged))
        validated.append((effective, normalize(schema, merged)))
    return validated


def effective_values(schema: Schema, raw_values: Mapping[str, str]) -> dict[str, str]:
    """Field name to the raw value that will actually be used."""
    values: dict[str, str] = {}
    for field in schema.ordered_fields():
        raw = (raw_values.get(field.name) or "").strip()
        if raw:
            values[field.name] = raw
        elif field.default is not None:
            values[field.name] = field.default
    return values
