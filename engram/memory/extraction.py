"""
Knowledge Extraction - Pattern-type-driven derivation of knowledge items

WHAT: Turns one Pattern into knowledge items plus tag-overlap relationships
WHERE: engram/memory/extraction.py - pure policy used by KnowledgeGraph.extract
WHO: KnowledgeGraph and tests; no storage access
TIME: O(k²) in the number of items produced (k is tiny, usually 1)

Extraction policy by pattern type:

    behavioral   {trigger, action}     -> rule        "When {trigger}, then {action}"
    temporal     {sequence: [...]}     -> relationship "Temporal sequence: a -> b"
    sequential   {steps: [...]}        -> rule        "Sequential pattern: a → b"
    categorical  {category, items}     -> concept     "Category c contains: x, y"
    anything else                      -> fact        canonical JSON of the data

A typed pattern missing its required fields falls back to the generic fact so
a non-empty pattern always yields at least one item.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from .models import (
    ExtractionResult,
    KnowledgeItem,
    KnowledgeMetadata,
    KnowledgeRelationship,
    KnowledgeType,
    Pattern,
    canonical_json,
    utcnow,
)

Extractor = Callable[[Pattern], Optional[KnowledgeItem]]


def _make_item(
    pattern: Pattern,
    *,
    kind: KnowledgeType,
    content: str,
    structured_data: Dict[str, Any],
    type_tags: List[str],
) -> KnowledgeItem:
    now = utcnow()
    meta = pattern.metadata
    return KnowledgeItem(
        pattern_id=pattern.id,
        type=kind,
        content=content,
        structured_data=structured_data,
        metadata=KnowledgeMetadata(
            confidence=meta.confidence,
            sources=[meta.source],
            frequency=meta.frequency,
            tags=[*type_tags, *meta.tags],
            last_verified=now,
        ),
        created_at=now,
        updated_at=now,
    )


def extract_behavioral(pattern: Pattern) -> Optional[KnowledgeItem]:
    data = pattern.data
    if not data.get("trigger") or not data.get("action"):
        return None
    return _make_item(
        pattern,
        kind="rule",
        content=f"When {data['trigger']}, then {data['action']}",
        structured_data={
            "trigger": data["trigger"],
            "action": data["action"],
            "context": data.get("context"),
        },
        type_tags=["behavioral", "rule"],
    )


def extract_temporal(pattern: Pattern) -> Optional[KnowledgeItem]:
    sequence = pattern.data.get("sequence")
    if not isinstance(sequence, list):
        return None
    return _make_item(
        pattern,
        kind="relationship",
        content="Temporal sequence: " + " -> ".join(str(s) for s in sequence),
        structured_data={
            "sequence": sequence,
            "interval": pattern.data.get("interval"),
            "duration": pattern.data.get("duration"),
        },
        type_tags=["temporal", "sequence"],
    )


def extract_sequential(pattern: Pattern) -> Optional[KnowledgeItem]:
    steps = pattern.data.get("steps")
    if not isinstance(steps, list):
        return None
    return _make_item(
        pattern,
        kind="rule",
        content="Sequential pattern: " + " → ".join(str(s) for s in steps),
        structured_data={
            "steps": steps,
            "conditions": pattern.data.get("conditions"),
        },
        type_tags=["sequential", "rule"],
    )


def extract_categorical(pattern: Pattern) -> Optional[KnowledgeItem]:
    data = pattern.data
    if not data.get("category") or not data.get("items"):
        return None
    items = data["items"]
    listed = ", ".join(str(i) for i in items) if isinstance(items, list) else str(items)
    return _make_item(
        pattern,
        kind="concept",
        content=f"Category {data['category']} contains: {listed}",
        structured_data={
            "category": data["category"],
            "items": items,
            "attributes": data.get("attributes"),
        },
        type_tags=["categorical", "concept"],
    )


def extract_generic(pattern: Pattern) -> KnowledgeItem:
    return _make_item(
        pattern,
        kind="fact",
        content=canonical_json(pattern.data),
        structured_data=dict(pattern.data),
        type_tags=["generic"],
    )


EXTRACTORS: Dict[str, Extractor] = {
    "behavioral": extract_behavioral,
    "temporal": extract_temporal,
    "sequential": extract_sequential,
    "categorical": extract_categorical,
}


def relate_items(items: List[KnowledgeItem]) -> List[KnowledgeRelationship]:
    """
    Link every pair of items that shares at least one tag.

    strength = |common tags| / max(|tags_a|, |tags_b|)
    """
    relationships: List[KnowledgeRelationship] = []
    for i, first in enumerate(items):
        first_tags = set(first.metadata.tags)
        for second in items[i + 1 :]:
            second_tags = set(second.metadata.tags)
            common = first_tags & second_tags
            if not common:
                continue
            relationships.append(
                KnowledgeRelationship(
                    from_id=first.id,
                    to_id=second.id,
                    type="associative",
                    strength=len(common) / max(len(first_tags), len(second_tags)),
                    metadata={"common_tags": sorted(common)},
                )
            )
    return relationships


def extract_knowledge(pattern: Pattern) -> ExtractionResult:
    extractor = EXTRACTORS.get(pattern.type)
    item = extractor(pattern) if extractor is not None else None
    items = [item if item is not None else extract_generic(pattern)]

    relationships = relate_items(items) if len(items) > 1 else []
    return ExtractionResult(items=items, relationships=relationships)


__all__ = [
    "EXTRACTORS",
    "extract_behavioral",
    "extract_categorical",
    "extract_generic",
    "extract_knowledge",
    "extract_sequential",
    "extract_temporal",
    "relate_items",
]
