"""Local goal/task orchestration store for multi-step agent work."""

__version__ = "0.4.0"
