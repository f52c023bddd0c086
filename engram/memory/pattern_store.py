"""
Pattern Store - Versioned, Expiring Persistence for Observed Patterns

WHAT: Durable key-value store of pattern records with version history and TTL
WHERE: engram/memory/pattern_store.py - leaf storage component (no graph/classifier deps)
WHO: MemorySystem saving analyzer candidates; report generators reading them back
TIME: save/get O(1) in memory + one file write, query O(n) linear scan

Patterns live in an owned in-memory map fronting a directory of JSON files:

    <data_dir>/<id>.json             current pattern record
    <data_dir>/versions-<id>.json    snapshot list, oldest first

Every overwrite of an existing pattern (save, update, restore) first appends
a PatternVersion snapshot of the prior state; at most ``max_versions``
snapshots are kept per pattern. Expiration is enforced lazily on read and
once during ``initialize()``; there is no background sweep.

Boundary Notes:
- Pattern ids are hash(type, data): saving the same observation upserts
- Re-saving an unchanged candidate is a no-op (no version, no timestamp bump)
- Corrupt files are skipped during the bulk load, write failures propagate
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..errors import NotInitializedError
from .models import (
    Pattern,
    PatternCandidate,
    PatternMetadata,
    PatternQuery,
    PatternUpdate,
    PatternVersion,
    generate_pattern_id,
    utcnow,
)
from .persistence import ensure_dir, read_json, remove_file, safe_filename, write_json

logger = logging.getLogger(__name__)

VERSIONS_PREFIX = "versions-"


@dataclass(slots=True)
class PatternStoreConfig:
    data_dir: Path | str = Path("./data/patterns")
    max_versions: int = 10
    default_expiration_days: int = 30


class PatternStore:
    """Owned repository of patterns and their version histories."""

    def __init__(self, config: PatternStoreConfig | None = None) -> None:
        self.config = config or PatternStoreConfig()
        self._data_dir = Path(self.config.data_dir).expanduser()
        self._patterns: Dict[str, Pattern] = {}
        self._versions: Dict[str, List[PatternVersion]] = {}
        self._initialized = False

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------ lifecycle ------------------
    def initialize(self) -> None:
        """Load persisted patterns and versions, then purge expired records."""
        if self._initialized:
            return

        ensure_dir(self._data_dir)
        self._load_all()
        self._initialized = True

        purged = self.purge_expired()
        logger.info(
            f"Pattern store initialized at {self._data_dir}: "
            f"{len(self._patterns)} patterns loaded, {purged} expired purged"
        )

    def purge_expired(self) -> int:
        """Delete every expired pattern; returns how many were removed."""
        self._ensure_initialized()
        now = utcnow()
        expired = [pid for pid, p in self._patterns.items() if p.is_expired(now)]
        for pattern_id in expired:
            self._drop(pattern_id)
        return len(expired)

    # ------------------ writes -------------------
    def save(self, candidate: PatternCandidate | Mapping[str, Any]) -> Pattern:
        """
        Upsert a pattern candidate.

        Args:
            candidate: ``PatternCandidate`` or a mapping with ``type``, ``data``,
                ``metadata`` and optionally ``expires_at``

        Returns:
            Copy of the stored pattern
        """
        self._ensure_initialized()
        if not isinstance(candidate, PatternCandidate):
            candidate = PatternCandidate.model_validate(candidate)

        pattern_id = generate_pattern_id(candidate.type, candidate.data)
        now = utcnow()

        existing = self._patterns.get(pattern_id)
        if existing is not None and existing.is_expired(now):
            self._drop(pattern_id)
            existing = None

        if existing is not None and self._is_unchanged(existing, candidate):
            logger.debug(f"Pattern {pattern_id} re-saved unchanged; skipping write")
            return existing.model_copy(deep=True)

        expires_at = candidate.expires_at or now + timedelta(days=self.config.default_expiration_days)
        pattern = Pattern(
            id=pattern_id,
            type=candidate.type,
            data=copy.deepcopy(candidate.data),
            metadata=candidate.metadata.model_copy(deep=True),
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
            expires_at=expires_at,
        )

        if existing is not None:
            self._snapshot(existing)

        self._patterns[pattern_id] = pattern
        self._persist_pattern(pattern)
        return pattern.model_copy(deep=True)

    def update(self, pattern_id: str, update: PatternUpdate | Mapping[str, Any]) -> Optional[Pattern]:
        self._ensure_initialized()
        if not isinstance(update, PatternUpdate):
            update = PatternUpdate.model_validate(update)

        current = self._live(pattern_id)
        if current is None:
            return None

        metadata = current.metadata
        if update.metadata:
            metadata = PatternMetadata.model_validate({**current.metadata.model_dump(), **update.metadata})

        self._snapshot(current)
        updated = current.model_copy(
            update={
                "data": copy.deepcopy(update.data) if update.data is not None else current.data,
                "metadata": metadata,
                "expires_at": update.expires_at or current.expires_at,
                "updated_at": utcnow(),
            },
            deep=True,
        )
        self._patterns[pattern_id] = updated
        self._persist_pattern(updated)
        return updated.model_copy(deep=True)

    def delete(self, pattern_id: str) -> bool:
        """Remove a pattern and its version history; False if it did not exist."""
        self._ensure_initialized()
        if pattern_id not in self._patterns:
            return False
        self._drop(pattern_id)
        return True

    def restore(self, pattern_id: str, version: int) -> Optional[Pattern]:
        """Roll a pattern back to ``version``; the current state is versioned first."""
        self._ensure_initialized()
        current = self._live(pattern_id)
        if current is None:
            return None

        target = next((v for v in self._versions.get(pattern_id, []) if v.version == version), None)
        if target is None:
            return None

        self._snapshot(current)
        restored = current.model_copy(
            update={
                "data": copy.deepcopy(target.data),
                "metadata": target.metadata.model_copy(deep=True),
                "updated_at": utcnow(),
            },
            deep=True,
        )
        self._patterns[pattern_id] = restored
        self._persist_pattern(restored)
        logger.info(f"Restored pattern {pattern_id} to version {version}")
        return restored.model_copy(deep=True)

    # ------------------ reads --------------------
    def get(self, pattern_id: str) -> Optional[Pattern]:
        self._ensure_initialized()
        pattern = self._live(pattern_id)
        return pattern.model_copy(deep=True) if pattern is not None else None

    def query(self, query: PatternQuery | Mapping[str, Any] | None = None) -> List[Pattern]:
        """Linear scan returning copies of every pattern matching all filters."""
        self._ensure_initialized()
        if query is None:
            query = PatternQuery()
        elif not isinstance(query, PatternQuery):
            query = PatternQuery.model_validate(query)

        now = utcnow()
        results: List[Pattern] = []
        for pattern in self._patterns.values():
            if query.not_expired and pattern.is_expired(now):
                continue
            if query.type is not None and pattern.type != query.type:
                continue
            if query.tags and not all(tag in pattern.metadata.tags for tag in query.tags):
                continue
            if query.min_confidence is not None and pattern.metadata.confidence < query.min_confidence:
                continue
            if query.min_frequency is not None and pattern.metadata.frequency < query.min_frequency:
                continue
            if query.created_after is not None and pattern.created_at < query.created_after:
                continue
            if query.created_before is not None and pattern.created_at > query.created_before:
                continue
            results.append(pattern.model_copy(deep=True))
        return results

    def get_versions(self, pattern_id: str) -> List[PatternVersion]:
        self._ensure_initialized()
        return [v.model_copy(deep=True) for v in self._versions.get(pattern_id, [])]

    def get_stats(self) -> Dict[str, Any]:
        self.purge_expired()
        by_type: Dict[str, int] = {}
        for pattern in self._patterns.values():
            by_type[pattern.type] = by_type.get(pattern.type, 0) + 1
        return {
            "total_patterns": len(self._patterns),
            "total_versions": sum(len(v) for v in self._versions.values()),
            "by_type": by_type,
        }

    def __len__(self) -> int:
        return len(self._patterns)

    # ------------------ internals ----------------
    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("PatternStore must be initialized before use; call initialize() first")

    def _live(self, pattern_id: str) -> Optional[Pattern]:
        """Stored pattern (not a copy), deleting it first if it has expired."""
        pattern = self._patterns.get(pattern_id)
        if pattern is None:
            return None
        if pattern.is_expired():
            logger.debug(f"Pattern {pattern_id} expired at {pattern.expires_at}; deleting")
            self._drop(pattern_id)
            return None
        return pattern

    @staticmethod
    def _is_unchanged(existing: Pattern, candidate: PatternCandidate) -> bool:
        # last_seen left to its default is not an observation of its own
        ignored = set() if "last_seen" in candidate.metadata.model_fields_set else {"last_seen"}
        if existing.data != candidate.data:
            return False
        if existing.metadata.model_dump(exclude=ignored) != candidate.metadata.model_dump(exclude=ignored):
            return False
        return candidate.expires_at is None or candidate.expires_at == existing.expires_at

    def _snapshot(self, pattern: Pattern) -> None:
        versions = self._versions.setdefault(pattern.id, [])
        next_version = versions[-1].version + 1 if versions else 1
        versions.append(
            PatternVersion(
                pattern_id=pattern.id,
                version=next_version,
                data=copy.deepcopy(pattern.data),
                metadata=pattern.metadata.model_copy(deep=True),
                timestamp=utcnow(),
            )
        )
        overflow = len(versions) - self.config.max_versions
        if overflow > 0:
            del versions[:overflow]
        self._persist_versions(pattern.id, versions)

    def _drop(self, pattern_id: str) -> None:
        self._patterns.pop(pattern_id, None)
        self._versions.pop(pattern_id, None)
        remove_file(self._pattern_path(pattern_id))
        remove_file(self._versions_path(pattern_id))

    def _pattern_path(self, pattern_id: str) -> Path:
        return self._data_dir / f"{safe_filename(pattern_id)}.json"

    def _versions_path(self, pattern_id: str) -> Path:
        return self._data_dir / f"{VERSIONS_PREFIX}{safe_filename(pattern_id)}.json"

    def _persist_pattern(self, pattern: Pattern) -> None:
        write_json(self._pattern_path(pattern.id), pattern.to_doc())

    def _persist_versions(self, pattern_id: str, versions: List[PatternVersion]) -> None:
        write_json(self._versions_path(pattern_id), [v.to_doc() for v in versions])

    def _load_all(self) -> None:
        loaded: List[Pattern] = []
        for path in sorted(self._data_dir.glob("*.json")):
            if path.name.startswith(VERSIONS_PREFIX):
                continue
            try:
                loaded.append(Pattern.from_doc(read_json(path)))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable pattern file {path.name}: {e}")

        # Approximate original insertion order
        for pattern in sorted(loaded, key=lambda p: p.created_at):
            self._patterns[pattern.id] = pattern
            self._load_versions(pattern.id)

    def _load_versions(self, pattern_id: str) -> None:
        path = self._versions_path(pattern_id)
        if not path.exists():
            return
        try:
            docs = read_json(path)
            self._versions[pattern_id] = [PatternVersion.from_doc(doc) for doc in docs]
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Skipping unreadable version history for {pattern_id}: {e}")


__all__ = [
    "PatternStore",
    "PatternStoreConfig",
]
