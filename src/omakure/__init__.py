"""omakure: interactive launcher for self-describing automation scripts."""

__version__ = "0.4.0"
