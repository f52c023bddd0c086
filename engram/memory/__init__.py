"""
Pattern Memory - Versioned patterns and the knowledge derived from them

WHAT: Local library storing observed patterns and a knowledge graph built from them
WHERE: engram/memory/ - storage and orchestration subsystem
WHO: Agents recording recurring observations; generators querying them back

Components:
- PatternStore: versioned, expiring JSON-file store of patterns
- KnowledgeGraph: items extracted per pattern type, tag/pattern indices,
  weighted relationships with BFS traversal
- MemorySystem: save -> extract -> classify pipeline with rebuild fallback

Boundary Notes:
- Single-threaded; no locking across store, graph and classifier
- Files written atomically (temp file + rename)
"""

from .knowledge_graph import KnowledgeGraph, KnowledgeGraphConfig  # noqa: F401
from .models import (  # noqa: F401
    ExtractionResult,
    KnowledgeItem,
    KnowledgeMetadata,
    KnowledgeQuery,
    KnowledgeRelationship,
    KnowledgeSearchResult,
    KnowledgeUpdate,
    Pattern,
    PatternCandidate,
    PatternMetadata,
    PatternQuery,
    PatternUpdate,
    PatternVersion,
)
from .pattern_store import PatternStore, PatternStoreConfig  # noqa: F401
from .system import MemorySystem, MemorySystemConfig  # noqa: F401
from .telemetry import MemorySpan, MemoryTelemetry  # noqa: F401

__all__ = [
    "ExtractionResult",
    "KnowledgeGraph",
    "KnowledgeGraphConfig",
    "KnowledgeItem",
    "KnowledgeMetadata",
    "KnowledgeQuery",
    "KnowledgeRelationship",
    "KnowledgeSearchResult",
    "KnowledgeUpdate",
    "MemorySystem",
    "MemorySystemConfig",
    "Pattern",
    "PatternCandidate",
    "PatternMetadata",
    "PatternQuery",
    "PatternStore",
    "PatternStoreConfig",
    "PatternUpdate",
    "PatternVersion",
    "MemorySpan",
    "MemoryTelemetry",
]
