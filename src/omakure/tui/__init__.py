"""Interactive navigator."""

from .app import run_navigator

__all__ = ["run_navigator"]
