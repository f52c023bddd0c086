"""
Memory System - Orchestrator over store, knowledge graph and classifier

WHAT: Facade composing PatternStore, KnowledgeGraph and PatternClassifier
WHERE: engram/memory/system.py - top of the memory stack
WHO: Agents feeding analyzer candidates; report/proposal generators reading back
TIME: add_pattern dominated by classifier training (incremental pass or rebuild)

add_pattern pipeline:

    PatternStore.save -> KnowledgeGraph.extract -> refresh_pattern_items
        -> PatternClassifier.update(incremental)    label already known
        -> dispose / initialize / train on corpus   new label or update failure

Boundary Notes:
- Store, graph and classifier updates are not atomic; a failure midway
  leaves earlier steps applied
- Re-saved patterns update their knowledge items in place: item ids and
  relationships survive, and an unchanged re-save touches nothing
- The classifier is exclusively owned: every initialize/load is paired with
  dispose (rebuild fallback and shutdown included)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ClassifierNotReadyError, ClassifierUpdateError
from ..learning.classifier import (
    ClassificationResult,
    ClassifierConfig,
    PatternClassifier,
    PatternFeatures,
    WeightedPattern,
)
from ..learning.features import features_from_record
from .knowledge_graph import KnowledgeGraph, KnowledgeGraphConfig
from .models import (
    KnowledgeItem,
    KnowledgeQuery,
    KnowledgeSearchResult,
    Pattern,
    PatternCandidate,
    PatternQuery,
    generate_pattern_id,
)
from .pattern_store import PatternStore, PatternStoreConfig
from .telemetry import ADD_PATTERN_SPAN, CLASSIFIER_REBUILD_SPAN, MemoryTelemetry

logger = logging.getLogger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(slots=True)
class MemorySystemConfig:
    patterns: PatternStoreConfig = field(default_factory=PatternStoreConfig)
    knowledge: KnowledgeGraphConfig = field(default_factory=KnowledgeGraphConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    model_dir: Optional[Path | str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MemorySystemConfig":
        """
        Build a config from ``ENGRAM_*`` environment variables.

        ENGRAM_DATA_DIR is the root holding ``patterns/``, ``knowledge/`` and
        ``model/``; unset variables keep the dataclass defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()

        root = env.get("ENGRAM_DATA_DIR")
        if root:
            base = Path(root).expanduser()
            config.patterns.data_dir = base / "patterns"
            config.knowledge.data_dir = base / "knowledge"
            config.model_dir = base / "model"

        if "ENGRAM_MAX_VERSIONS" in env:
            config.patterns.max_versions = int(env["ENGRAM_MAX_VERSIONS"])
        if "ENGRAM_EXPIRATION_DAYS" in env:
            config.patterns.default_expiration_days = int(env["ENGRAM_EXPIRATION_DAYS"])
        if "ENGRAM_MAX_ITEMS" in env:
            config.knowledge.max_items = int(env["ENGRAM_MAX_ITEMS"])
        if "ENGRAM_PERSISTENCE" in env:
            config.knowledge.enable_persistence = env["ENGRAM_PERSISTENCE"].strip().lower() not in _FALSE_VALUES
        if "ENGRAM_EPOCHS" in env:
            config.classifier.epochs = int(env["ENGRAM_EPOCHS"])
        return config


class MemorySystem:
    """Coordinates pattern storage, knowledge extraction and classification."""

    def __init__(
        self,
        *,
        config: MemorySystemConfig | None = None,
        pattern_store: PatternStore | None = None,
        knowledge_graph: KnowledgeGraph | None = None,
        classifier: PatternClassifier | None = None,
        telemetry: MemoryTelemetry | None = None,
    ) -> None:
        cfg = config or MemorySystemConfig()
        self.config = cfg
        self._store = pattern_store or PatternStore(cfg.patterns)
        self._graph = knowledge_graph or KnowledgeGraph(cfg.knowledge)
        self._classifier = classifier or PatternClassifier(cfg.classifier)
        self._telemetry = telemetry or MemoryTelemetry()
        self._model_dir = Path(cfg.model_dir).expanduser() if cfg.model_dir is not None else None

    @property
    def pattern_store(self) -> PatternStore:
        return self._store

    @property
    def knowledge_graph(self) -> KnowledgeGraph:
        return self._graph

    @property
    def classifier(self) -> PatternClassifier:
        return self._classifier

    @property
    def telemetry(self) -> MemoryTelemetry:
        return self._telemetry

    # ------------------ lifecycle ------------------
    def initialize(self) -> None:
        self._store.initialize()
        self._graph.initialize()

        if self._model_dir is not None and PatternClassifier.saved_model_exists(self._model_dir):
            self._classifier.load(self._model_dir)
            return

        patterns = self._store.query(PatternQuery(not_expired=True))
        if patterns:
            self._classifier.initialize([self.features_for(p) for p in patterns])
            logger.info(f"Bootstrapped classifier from {len(patterns)} stored patterns")

    def shutdown(self) -> None:
        if self._model_dir is not None and self._classifier.is_ready:
            self._classifier.save(self._model_dir)
        self._classifier.dispose()

    # ------------------ writes ---------------------
    def add_pattern(self, candidate: PatternCandidate | Mapping[str, Any]) -> Pattern:
        """
        Store a candidate, derive its knowledge and fold it into the classifier.

        Knowledge already derived from the same pattern is refreshed in place
        (ids and relationships kept); an unchanged re-save leaves it untouched.

        Returns:
            The stored pattern
        """
        if not isinstance(candidate, PatternCandidate):
            candidate = PatternCandidate.model_validate(candidate)

        with self._telemetry.span(ADD_PATTERN_SPAN) as span:
            previous = self._store.get(generate_pattern_id(candidate.type, candidate.data))
            pattern = self._store.save(candidate)
            span.pattern_type = pattern.type

            span.knowledge_refreshed = previous != pattern or not self._graph.items_for_pattern(pattern.id)
            if span.knowledge_refreshed:
                extraction = self._graph.extract(pattern)
                self._graph.refresh_pattern_items(pattern.id, extraction)
                span.items_extracted = len(extraction.items)
            else:
                logger.debug(f"Pattern {pattern.id} unchanged; keeping its knowledge items")
                span.items_extracted = 0

            features = self.features_for(pattern)
            if self._classifier.is_ready and not self._classifier.has_unseen_labels([features]):
                try:
                    self._classifier.update([features], incremental=True)
                    span.classifier_path = "incremental"
                    return pattern
                except (ClassifierNotReadyError, ClassifierUpdateError) as exc:
                    logger.warning(f"Incremental classifier update failed, rebuilding: {exc}")

            span.classifier_path = "rebuild"
            self._rebuild_classifier()
        return pattern

    # ------------------ reads ----------------------
    def features_for(self, pattern: Pattern) -> PatternFeatures:
        return PatternFeatures(
            id=pattern.id,
            features=features_from_record(pattern.data, self._classifier.input_size),
            label=pattern.type,
            confidence=pattern.metadata.confidence,
            frequency=pattern.metadata.frequency,
            timestamp=pattern.created_at,
        )

    def search_patterns(self, query: PatternQuery | Mapping[str, Any] | None = None) -> List[Pattern]:
        return self._store.query(query)

    def search_knowledge(self, query: KnowledgeQuery | Mapping[str, Any] | None = None) -> List[KnowledgeSearchResult]:
        return self._graph.query(query)

    def classify_pattern(self, pattern: Pattern) -> ClassificationResult:
        features = self.features_for(pattern)
        return self._classifier.classify(features.features, pattern_id=pattern.id)

    def rank_patterns(self, query: PatternQuery | Mapping[str, Any] | None = None) -> List[WeightedPattern]:
        """Matching patterns ordered by confidence/frequency weight, highest first."""
        return PatternClassifier.apply_weights([self.features_for(p) for p in self._store.query(query)])

    def find_related_knowledge(self, item_id: str, max_depth: int = 2) -> List[KnowledgeItem]:
        return self._graph.find_related(item_id, max_depth=max_depth)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "patterns": self._store.get_stats(),
            "model": self._classifier.get_stats(),
            "knowledge": self._graph.get_stats(),
        }

    # ------------------ internals ------------------
    def _rebuild_classifier(self) -> None:
        corpus = [self.features_for(p) for p in self._store.query(PatternQuery(not_expired=True))]
        with self._telemetry.span(CLASSIFIER_REBUILD_SPAN) as span:
            span.training_examples = len(corpus)
            self._classifier.dispose()
            if not corpus:
                return
            self._classifier.initialize(corpus)
            self._classifier.train(corpus)
            span.num_classes = len(self._classifier.label_map)
        logger.info(
            f"Rebuilt classifier on {len(corpus)} patterns with labels {list(self._classifier.label_map)}"
        )


__all__ = ["MemorySystem", "MemorySystemConfig"]
