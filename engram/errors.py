"""
Error Taxonomy - Failures Raised by the Memory Core

WHAT: Exception hierarchy shared by the pattern store, knowledge graph and classifier
WHERE: engram/errors.py - imported by every component
WHO: Callers of the memory core that need to tell failure kinds apart

Lookup misses are not errors: `get`/`update`/`restore` return ``None`` and
`delete`/`remove` return ``False``. Everything not listed here propagates
unchanged.
"""

from __future__ import annotations


class EngramError(RuntimeError):
    """Base class for memory core failures."""


class NotInitializedError(EngramError):
    """Raised when a component is used before ``initialize()`` was called."""


class PersistenceError(EngramError):
    """Raised when a record cannot be written to (or read from) its storage directory."""


class ClassifierNotReadyError(EngramError):
    """Raised when classification or training is attempted without a live model."""


class ClassifierUpdateError(EngramError):
    """Raised when an incremental update cannot be applied to the current model."""


__all__ = [
    "EngramError",
    "NotInitializedError",
    "PersistenceError",
    "ClassifierNotReadyError",
    "ClassifierUpdateError",
]
