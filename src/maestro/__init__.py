"""Deterministic planning and execution workflow for agent-assisted development."""

__all__ = ["__version__"]

__version__ = "0.1.0"
