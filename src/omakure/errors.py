"""omakure exception hierarchy.

All omakure-specific exceptions inherit from OmakureError so the CLI and
the navigator can catch them in one place.
"""

from __future__ import annotations


class OmakureError(Exception):
    """Base exception for all omakure errors."""


class WorkspaceError(OmakureError):
    """Workspace root missing or unreadable."""

    def __init__(self, message: str, *, expected: str | None = None) -> None:
        super().__init__(message)
        self.expected = expected


class SchemaError(OmakureError):
    """A script's schema is absent or malformed."""


class ScriptNotFoundError(OmakureError):
    """A script path given on the command line does not resolve."""


class PersistError(OmakureError):
    """History or index data could not be written."""


class ValidationError(OmakureError):
    """Input rejected by the normalizer."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name
        self.message = message


class MissingRequired(ValidationError):
    def __init__(self, field_name: str) -> None:
        super().__init__(field_name, "Value required")


class InvalidType(ValidationError):
    def __init__(self, field_name: str, value: str, message: str) -> None:
        super().__init__(field_name, message)
        self.value = value


class InvalidChoice(ValidationError):
    def __init__(self, field_name: str, value: str, choices: tuple[str, ...]) -> None:
        super().__init__(field_name, f"Allowed values: {', '.join(choices)}")
        self.value = value
        self.choices = choices


class UnknownQueueField(ValidationError):
    def __init__(self, field_name: str) -> None:
        super().__init__(field_name, "Queue references an undeclared field")


class EnvFileError(OmakureError):
    """An environment-default file or the active pointer is unusable."""
