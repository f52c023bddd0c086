"""
Knowledge Graph - Items, Indices and Weighted Relationships

WHAT: Stores knowledge items derived from patterns and the relationships between them
WHERE: engram/memory/knowledge_graph.py - derived-knowledge layer above extraction
WHO: MemorySystem adding extracted knowledge; report generators querying it
TIME: add/remove O(degree), query O(n) scan, find_related O(V+E) within depth

Items are indexed three ways, all rebuilt from the item records on load:
- pattern index: source pattern id -> item ids
- tag index: tag -> item ids
- adjacency: item id -> ids of relationships touching it (undirected)

Persisted layout (when ``enable_persistence`` is set):

    <data_dir>/knowledge-<id>.json   one file per item
    <data_dir>/relationships.json    every relationship, always rewritten in full

Boundary Notes:
- Relationship endpoints must exist when the relationship is added
- Removing an item cascades over its adjacency list only
- At capacity the single oldest item (by created_at) is evicted before insert
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from ..errors import NotInitializedError
from .extraction import extract_knowledge, relate_items
from .models import (
    ExtractionResult,
    KnowledgeItem,
    KnowledgeMetadata,
    KnowledgeQuery,
    KnowledgeRelationship,
    KnowledgeSearchResult,
    KnowledgeUpdate,
    Pattern,
    canonical_json,
    utcnow,
)
from .persistence import ensure_dir, read_json, remove_file, safe_filename, write_json

logger = logging.getLogger(__name__)

ITEM_PREFIX = "knowledge-"
RELATIONSHIPS_FILE = "relationships.json"

CONTENT_MATCH_BOOST = 1.2
STRUCTURED_MATCH_BOOST = 1.1


@dataclass(slots=True)
class KnowledgeGraphConfig:
    data_dir: Path | str = Path("./data/knowledge")
    max_items: int = 10_000
    enable_persistence: bool = True


class KnowledgeGraph:
    """
    Knowledge items plus an undirected, weighted relationship graph.

    Example:
        graph = KnowledgeGraph(KnowledgeGraphConfig(data_dir="/tmp/knowledge"))
        graph.initialize()

        extraction = graph.extract(pattern)
        graph.add_many(extraction.items)

        results = graph.query(KnowledgeQuery(tags=["weather"], text="rain"))
        neighbours = graph.find_related(results[0].item.id, max_depth=2)
    """

    def __init__(self, config: KnowledgeGraphConfig | None = None) -> None:
        self.config = config or KnowledgeGraphConfig()
        self._data_dir = Path(self.config.data_dir).expanduser()
        self._items: Dict[str, KnowledgeItem] = {}
        self._relationships: Dict[str, KnowledgeRelationship] = {}
        self._pattern_index: Dict[str, Set[str]] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._adjacency: Dict[str, List[str]] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------ lifecycle ------------------
    def initialize(self) -> None:
        if self._initialized:
            return

        if self.config.enable_persistence:
            ensure_dir(self._data_dir)
            self._load_all()

        self._initialized = True
        logger.info(
            f"Knowledge graph initialized: {len(self._items)} items, "
            f"{len(self._relationships)} relationships"
        )

    # ------------------ extraction ---------------
    @staticmethod
    def extract(pattern: Pattern) -> ExtractionResult:
        """Derive knowledge items (and their tag-overlap relationships) from a pattern."""
        return extract_knowledge(pattern)

    @staticmethod
    def relate_items(items: List[KnowledgeItem]) -> List[KnowledgeRelationship]:
        return relate_items(items)

    # ------------------ writes -------------------
    def add(self, item: KnowledgeItem) -> None:
        self._ensure_initialized()

        existing = self._items.get(item.id)
        if existing is None and len(self._items) >= self.config.max_items:
            self._evict_oldest()
        if existing is not None:
            self._unindex(existing)

        stored = item.model_copy(deep=True)
        self._items[stored.id] = stored
        self._index(stored)
        if self.config.enable_persistence:
            write_json(self._item_path(stored.id), stored.to_doc())

    def add_many(self, items: List[KnowledgeItem]) -> None:
        self._ensure_initialized()
        for item in items:
            self.add(item)

    def add_relationship(self, relationship: KnowledgeRelationship) -> None:
        self._ensure_initialized()
        missing = [i for i in (relationship.from_id, relationship.to_id) if i not in self._items]
        if missing:
            raise ValueError(
                f"Relationship {relationship.id} references unknown items: {', '.join(missing)}"
            )

        previous = self._relationships.get(relationship.id)
        if previous is not None:
            self._detach(previous)

        stored = relationship.model_copy(deep=True)
        self._relationships[stored.id] = stored
        self._attach(stored)
        self._persist_relationships()

    def update(self, item_id: str, update: KnowledgeUpdate | Mapping[str, Any]) -> Optional[KnowledgeItem]:
        self._ensure_initialized()
        if not isinstance(update, KnowledgeUpdate):
            update = KnowledgeUpdate.model_validate(update)

        current = self._items.get(item_id)
        if current is None:
            return None

        metadata = current.metadata
        if update.metadata:
            metadata = KnowledgeMetadata.model_validate({**current.metadata.model_dump(), **update.metadata})

        updated = current.model_copy(
            update={
                "content": update.content if update.content is not None else current.content,
                "structured_data": (
                    update.structured_data if update.structured_data is not None else current.structured_data
                ),
                "metadata": metadata,
                "updated_at": utcnow(),
            },
            deep=True,
        )
        self._unindex(current)
        self._items[item_id] = updated
        self._index(updated)
        if self.config.enable_persistence:
            write_json(self._item_path(item_id), updated.to_doc())
        return updated.model_copy(deep=True)

    def remove(self, item_id: str) -> bool:
        """Delete an item, its index entries and every relationship touching it."""
        self._ensure_initialized()
        item = self._items.pop(item_id, None)
        if item is None:
            return False

        self._unindex(item)
        dropped = 0
        for rel_id in self._adjacency.pop(item_id, []):
            relationship = self._relationships.pop(rel_id, None)
            if relationship is None:
                continue
            dropped += 1
            other = relationship.other_end(item_id)
            if other is not None and other != item_id and rel_id in self._adjacency.get(other, []):
                self._adjacency[other].remove(rel_id)

        if self.config.enable_persistence:
            remove_file(self._item_path(item_id))
            if dropped:
                self._persist_relationships()

        logger.debug(f"Removed knowledge item {item_id} ({dropped} relationships cascaded)")
        return True

    def remove_pattern_items(self, pattern_id: str) -> int:
        """Remove every item derived from ``pattern_id``; returns the count removed."""
        self._ensure_initialized()
        item_ids = list(self._pattern_index.get(pattern_id, ()))
        for item_id in item_ids:
            self.remove(item_id)
        return len(item_ids)

    def refresh_pattern_items(self, pattern_id: str, extraction: ExtractionResult) -> List[KnowledgeItem]:
        """
        Fold a fresh extraction of ``pattern_id`` into the items already derived from it.

        Existing items are paired with extracted items in order and updated in
        place, so their ids and every relationship touching them survive. A
        pairing whose type changed is replaced; surplus old items are removed
        and surplus new items added. Extracted relationships are only added
        between items that did not exist before.

        Returns:
            The pattern's items after the refresh
        """
        self._ensure_initialized()
        existing = self.items_for_pattern(pattern_id)
        resolved: Dict[str, str] = {}
        fresh: Set[str] = set()

        for index, item in enumerate(extraction.items):
            old = existing[index] if index < len(existing) else None
            if old is not None and old.type == item.type:
                self.update(
                    old.id,
                    KnowledgeUpdate(
                        content=item.content,
                        structured_data=item.structured_data,
                        metadata=item.metadata.model_dump(),
                    ),
                )
                resolved[item.id] = old.id
                continue
            if old is not None:
                self.remove(old.id)
            self.add(item)
            resolved[item.id] = item.id
            fresh.add(item.id)

        for old in existing[len(extraction.items) :]:
            self.remove(old.id)

        for relationship in extraction.relationships:
            if relationship.from_id in fresh and relationship.to_id in fresh:
                self.add_relationship(relationship)

        return [self._items[resolved[item.id]].model_copy(deep=True) for item in extraction.items]

    # ------------------ reads --------------------
    def get(self, item_id: str) -> Optional[KnowledgeItem]:
        self._ensure_initialized()
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    def get_relationship(self, relationship_id: str) -> Optional[KnowledgeRelationship]:
        self._ensure_initialized()
        relationship = self._relationships.get(relationship_id)
        return relationship.model_copy(deep=True) if relationship is not None else None

    def get_relationships(self, item_id: str) -> List[KnowledgeRelationship]:
        self._ensure_initialized()
        return [self._relationships[r].model_copy(deep=True) for r in self._adjacency.get(item_id, [])]

    def query(self, query: KnowledgeQuery | Mapping[str, Any] | None = None) -> List[KnowledgeSearchResult]:
        """
        Filter and rank knowledge items.

        Scoring:
            1.0 base
            × matched/requested when tags are given
            × 1.2 when text matches the content
            × 1.1 when text matches the serialised structured data
            × strongest linking relationship when ``related_to`` is given

        Returns:
            Results sorted by descending relevance score
        """
        self._ensure_initialized()
        if query is None:
            query = KnowledgeQuery()
        elif not isinstance(query, KnowledgeQuery):
            query = KnowledgeQuery.model_validate(query)

        candidates: Optional[Set[str]] = None
        if query.tags:
            candidates = set()
            for tag in query.tags:
                candidates |= self._tag_index.get(tag, set())
        if query.pattern_id is not None:
            owned = self._pattern_index.get(query.pattern_id, set())
            candidates = owned if candidates is None else candidates & owned

        neighbour_strength: Dict[str, float] = {}
        if query.related_to is not None:
            for rel_id in self._adjacency.get(query.related_to, []):
                relationship = self._relationships[rel_id]
                other = relationship.other_end(query.related_to)
                if other is not None and other != query.related_to:
                    neighbour_strength[other] = max(neighbour_strength.get(other, 0.0), relationship.strength)

        text = query.text.lower() if query.text else None
        results: List[KnowledgeSearchResult] = []

        for item in self._items.values():
            if candidates is not None and item.id not in candidates:
                continue
            if query.type is not None and item.type != query.type:
                continue
            if query.min_confidence is not None and item.metadata.confidence < query.min_confidence:
                continue

            score = 1.0
            if query.tags:
                matched = sum(1 for tag in query.tags if tag in item.metadata.tags)
                score = matched / len(query.tags)

            if text is not None:
                content_match = text in item.content.lower()
                structured_match = text in canonical_json(item.structured_data).lower()
                if not content_match and not structured_match:
                    continue
                if content_match:
                    score *= CONTENT_MATCH_BOOST
                if structured_match:
                    score *= STRUCTURED_MATCH_BOOST

            if query.related_to is not None:
                if item.id not in neighbour_strength:
                    continue
                score *= neighbour_strength[item.id]

            results.append(KnowledgeSearchResult(item=item.model_copy(deep=True), relevance_score=score))

        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results

    def find_related(self, item_id: str, max_depth: int = 2) -> List[KnowledgeItem]:
        """Breadth-first walk over relationships (either direction), start item excluded."""
        self._ensure_initialized()
        visited = {item_id}
        frontier = [item_id]
        related: List[KnowledgeItem] = []

        for _ in range(max_depth):
            next_frontier: List[str] = []
            for current in frontier:
                for rel_id in self._adjacency.get(current, []):
                    neighbour = self._relationships[rel_id].other_end(current)
                    if neighbour is None or neighbour in visited:
                        continue
                    visited.add(neighbour)
                    item = self._items.get(neighbour)
                    if item is None:
                        continue
                    related.append(item.model_copy(deep=True))
                    next_frontier.append(neighbour)
            if not next_frontier:
                break
            frontier = next_frontier

        return related

    def items_for_pattern(self, pattern_id: str) -> List[KnowledgeItem]:
        self._ensure_initialized()
        owned = self._pattern_index.get(pattern_id, set())
        return [item.model_copy(deep=True) for item in self._items.values() if item.id in owned]

    def get_stats(self) -> Dict[str, Any]:
        self._ensure_initialized()
        by_type: Dict[str, int] = {}
        total_confidence = 0.0
        for item in self._items.values():
            by_type[item.type] = by_type.get(item.type, 0) + 1
            total_confidence += item.metadata.confidence

        return {
            "total_items": len(self._items),
            "by_type": by_type,
            "total_relationships": len(self._relationships),
            "average_confidence": total_confidence / len(self._items) if self._items else 0.0,
        }

    def __len__(self) -> int:
        return len(self._items)

    # ------------------ internals ----------------
    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("KnowledgeGraph must be initialized before use; call initialize() first")

    def _index(self, item: KnowledgeItem) -> None:
        self._pattern_index.setdefault(item.pattern_id, set()).add(item.id)
        for tag in item.metadata.tags:
            self._tag_index.setdefault(tag, set()).add(item.id)

    def _unindex(self, item: KnowledgeItem) -> None:
        owned = self._pattern_index.get(item.pattern_id)
        if owned is not None:
            owned.discard(item.id)
            if not owned:
                del self._pattern_index[item.pattern_id]
        for tag in item.metadata.tags:
            tagged = self._tag_index.get(tag)
            if tagged is not None:
                tagged.discard(item.id)
                if not tagged:
                    del self._tag_index[tag]

    def _attach(self, relationship: KnowledgeRelationship) -> None:
        self._adjacency.setdefault(relationship.from_id, []).append(relationship.id)
        if relationship.to_id != relationship.from_id:
            self._adjacency.setdefault(relationship.to_id, []).append(relationship.id)

    def _detach(self, relationship: KnowledgeRelationship) -> None:
        for endpoint in {relationship.from_id, relationship.to_id}:
            edges = self._adjacency.get(endpoint, [])
            if relationship.id in edges:
                edges.remove(relationship.id)

    def _evict_oldest(self) -> None:
        oldest = min(self._items.values(), key=lambda i: i.created_at)
        logger.info(f"Knowledge graph at capacity ({self.config.max_items}); evicting {oldest.id}")
        self.remove(oldest.id)

    def _item_path(self, item_id: str) -> Path:
        return self._data_dir / f"{ITEM_PREFIX}{safe_filename(item_id)}.json"

    def _persist_relationships(self) -> None:
        if not self.config.enable_persistence:
            return
        write_json(self._data_dir / RELATIONSHIPS_FILE, [r.to_doc() for r in self._relationships.values()])

    def _load_all(self) -> None:
        for path in sorted(self._data_dir.glob(f"{ITEM_PREFIX}*.json")):
            try:
                item = KnowledgeItem.from_doc(read_json(path))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable knowledge file {path.name}: {e}")
                continue
            self._items[item.id] = item
            self._index(item)

        rel_path = self._data_dir / RELATIONSHIPS_FILE
        if not rel_path.exists():
            return
        try:
            docs = read_json(rel_path)
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable relationships file: {e}")
            return

        if not isinstance(docs, list):
            logger.warning(f"Skipping relationships file: expected a list, got {type(docs).__name__}")
            return

        for doc in docs:
            try:
                relationship = KnowledgeRelationship.from_doc(doc)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed relationship record: {e}")
                continue
            if relationship.from_id not in self._items or relationship.to_id not in self._items:
                logger.warning(f"Dropping relationship {relationship.id}: endpoint missing after load")
                continue
            self._relationships[relationship.id] = relationship
            self._attach(relationship)


__all__ = [
    "KnowledgeGraph",
    "KnowledgeGraphConfig",
]
