"""
JSON File Persistence - Directory-backed record storage

WHAT: Atomic JSON read/write/remove helpers for one-file-per-record layouts
WHERE: engram/memory/persistence.py - storage layer under PatternStore and KnowledgeGraph
WHO: Components persisting records to a data directory
TIME: Single-record write <5ms on local disk

Writes go to a temporary sibling file that is then moved into place with
``os.replace`` so a crash never leaves a half-written record. Write failures
surface as ``PersistenceError``; read errors are returned to the caller as
the original exception so bulk loaders can log and skip a bad file.

Boundary Notes:
- No file locking: one writer per data directory
- File names are derived from ids via ``safe_filename``; ids are read back
  from the file contents, never from the name
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from ..errors import PersistenceError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def safe_filename(record_id: str) -> str:
    """Map an arbitrary id onto a portable file name stem."""
    return _UNSAFE_CHARS.sub("_", record_id)


def ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PersistenceError(f"Cannot create data directory {path}: {exc}") from exc


def read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json(path: Path, payload: Any) -> None:
    """Atomically replace ``path`` with ``payload`` serialised as indented JSON."""
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc


def remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise PersistenceError(f"Failed to remove {path}: {exc}") from exc


__all__ = [
    "ensure_dir",
    "read_json",
    "remove_file",
    "safe_filename",
    "write_json",
]
