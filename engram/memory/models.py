"""
Memory Models - Type-safe records for patterns and knowledge

WHAT: Pydantic models for patterns, pattern versions, knowledge items and relationships
WHERE: engram/memory/models.py - data layer shared by store, graph and orchestrator
WHO: PatternStore, KnowledgeGraph and MemorySystem creating/validating records
TIME: Model validation <1ms

All persisted records round-trip through ``to_doc()`` / ``from_doc()`` which
produce plain JSON-compatible dictionaries (ISO 8601 timestamps). Query and
update models carry only optional fields; ``None`` means "not filtered" or
"left unchanged".

Boundary Notes:
- Pattern ids are a deterministic hash of (type, data), never random
- Knowledge items reference their source pattern but are not owned by it
- Relevance scores may exceed 1.0 once text-match boosts are applied
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

KnowledgeType = Literal["fact", "rule", "relationship", "concept"]
RelationshipType = Literal["causal", "temporal", "hierarchical", "associative", "contradictory"]

PATTERN_ID_DIGEST_CHARS = 16


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def canonical_json(value: Any) -> str:
    """Serialise ``value`` with sorted keys so equal mappings produce equal text."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def generate_pattern_id(pattern_type: str, data: Dict[str, Any]) -> str:
    """Derive the pattern id from its type and data (SHA-256, truncated)."""
    payload = canonical_json({"type": pattern_type, "data": data})
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:PATTERN_ID_DIGEST_CHARS]
    return f"{pattern_type}-{digest}"


def generate_knowledge_id() -> str:
    return f"knowledge_{uuid.uuid4().hex[:12]}"


def generate_relationship_id() -> str:
    return f"rel_{uuid.uuid4().hex[:12]}"


def _dedupe(tags: List[str]) -> List[str]:
    return list(dict.fromkeys(tags))


# ============================================================
# Patterns
# ============================================================


class PatternMetadata(BaseModel):
    """Observation statistics attached to a pattern."""

    confidence: float = Field(ge=0.0, le=1.0, default=0.5)
    frequency: int = Field(ge=0, default=0)
    last_seen: datetime = Field(default_factory=utcnow)
    tags: List[str] = Field(default_factory=list)
    source: str = ""

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return _dedupe(value)


class PatternCandidate(BaseModel):
    """Pattern as supplied by an upstream analyzer (no id or timestamps yet)."""

    type: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: PatternMetadata = Field(default_factory=PatternMetadata)
    expires_at: Optional[datetime] = None


class Pattern(BaseModel):
    """
    A recorded recurring observation.

    Examples:
    - type="behavioral", data={"trigger": "rain", "action": "use umbrella"}
    - type="temporal", data={"sequence": ["wake", "coffee", "email"]}
    """

    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: PatternMetadata = Field(default_factory=PatternMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> Pattern:
        return cls.model_validate(doc)


class PatternVersion(BaseModel):
    """Snapshot of a pattern's data and metadata taken before it was overwritten."""

    pattern_id: str
    version: int = Field(ge=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: PatternMetadata
    timestamp: datetime = Field(default_factory=utcnow)

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> PatternVersion:
        return cls.model_validate(doc)


class PatternUpdate(BaseModel):
    """Partial pattern update; ``metadata`` is merged key-by-key over the current metadata."""

    data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None


class PatternQuery(BaseModel):
    """Filter over stored patterns. All given conditions must hold."""

    type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)  # "all of"
    min_confidence: Optional[float] = None
    min_frequency: Optional[int] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    not_expired: bool = False


# ============================================================
# Knowledge
# ============================================================


class KnowledgeMetadata(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0, default=0.5)
    sources: List[str] = Field(default_factory=list)
    frequency: int = Field(ge=0, default=0)
    tags: List[str] = Field(default_factory=list)
    last_verified: Optional[datetime] = None

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return _dedupe(value)


class KnowledgeItem(BaseModel):
    """
    Structured fact, rule, relationship or concept derived from one pattern.

    Examples:
    - type="rule", content="When rain, then use umbrella"
    - type="concept", content="Category fruit contains: apple, banana"
    """

    id: str = Field(default_factory=generate_knowledge_id)
    pattern_id: str
    type: KnowledgeType
    content: str
    structured_data: Dict[str, Any] = Field(default_factory=dict)
    metadata: KnowledgeMetadata = Field(default_factory=KnowledgeMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> KnowledgeItem:
        return cls.model_validate(doc)


class KnowledgeRelationship(BaseModel):
    """Typed, weighted edge between two knowledge items."""

    id: str = Field(default_factory=generate_relationship_id)
    from_id: str
    to_id: str
    type: RelationshipType = "associative"
    strength: float = Field(ge=0.0, le=1.0, default=0.5)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def other_end(self, item_id: str) -> Optional[str]:
        """Return the endpoint opposite ``item_id`` (None if not an endpoint)."""
        if self.from_id == item_id:
            return self.to_id
        if self.to_id == item_id:
            return self.from_id
        return None

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> KnowledgeRelationship:
        return cls.model_validate(doc)


class KnowledgeUpdate(BaseModel):
    content: Optional[str] = None
    structured_data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class KnowledgeQuery(BaseModel):
    """Filter and ranking request over knowledge items."""

    type: Optional[KnowledgeType] = None
    tags: List[str] = Field(default_factory=list)  # "any of"
    pattern_id: Optional[str] = None
    min_confidence: Optional[float] = None
    text: Optional[str] = None
    related_to: Optional[str] = None


class KnowledgeSearchResult(BaseModel):
    item: KnowledgeItem
    relevance_score: float = Field(ge=0.0)


class ExtractionResult(BaseModel):
    items: List[KnowledgeItem] = Field(default_factory=list)
    relationships: List[KnowledgeRelationship] = Field(default_factory=list)


__all__ = [
    "ExtractionResult",
    "KnowledgeItem",
    "KnowledgeMetadata",
    "KnowledgeQuery",
    "KnowledgeRelationship",
    "KnowledgeSearchResult",
    "KnowledgeType",
    "KnowledgeUpdate",
    "Pattern",
    "PatternCandidate",
    "PatternMetadata",
    "PatternQuery",
    "PatternUpdate",
    "PatternVersion",
    "RelationshipType",
    "canonical_json",
    "generate_knowledge_id",
    "generate_pattern_id",
    "generate_relationship_id",
    "utcnow",
]
