"""Engram pattern-memory core package."""

__all__ = [
    "errors",
    "learning",
    "memory",
]
