from datetime import datetime, timedelta, timezone

import pytest

from engram.errors import ClassifierUpdateError
from engram.learning.classifier import ClassifierConfig, PatternClassifier
from engram.memory.knowledge_graph import KnowledgeGraphConfig
from engram.memory.models import KnowledgeQuery, KnowledgeRelationship, PatternQuery
from engram.memory.pattern_store import PatternStoreConfig
from engram.memory.system import MemorySystem, MemorySystemConfig
from engram.memory.telemetry import MemoryTelemetry


class RecordingTelemetry(MemoryTelemetry):
    def __init__(self):
        self.spans = []
        super().__init__(sink=lambda record: self.spans.append((record.name, record.attributes())))


class FailingUpdateClassifier(PatternClassifier):
    def __init__(self, config):
        super().__init__(config)
        self.update_calls = 0

    def update(self, features, incremental=True):
        self.update_calls += 1
        raise ClassifierUpdateError("boom")


def make_config(tmp_path, model_dir=None):
    return MemorySystemConfig(
        patterns=PatternStoreConfig(data_dir=tmp_path / "patterns"),
        knowledge=KnowledgeGraphConfig(data_dir=tmp_path / "knowledge"),
        classifier=ClassifierConfig(hidden_layers=(8, 4), epochs=2, seed=0),
        model_dir=model_dir,
    )


def make_system(tmp_path, **kwargs):
    model_dir = kwargs.pop("model_dir", None)
    system = MemorySystem(config=make_config(tmp_path, model_dir), **kwargs)
    system.initialize()
    return system


def rain(confidence=0.8, frequency=3):
    return {
        "type": "behavioral",
        "data": {"trigger": "rain", "action": "use umbrella"},
        "metadata": {"confidence": confidence, "frequency": frequency, "tags": ["weather"], "source": "diary"},
    }


def snow():
    return {
        "type": "behavioral",
        "data": {"trigger": "snow", "action": "wear boots"},
        "metadata": {"confidence": 0.6, "frequency": 1, "tags": ["weather"], "source": "diary"},
    }


def morning():
    return {
        "type": "temporal",
        "data": {"sequence": ["wake", "coffee", "email"]},
        "metadata": {"confidence": 0.9, "frequency": 12, "tags": ["routine"], "source": "calendar"},
    }


def test_empty_store_leaves_classifier_uninitialized(tmp_path):
    system = make_system(tmp_path)
    assert system.get_stats()["model"]["is_initialized"] is False


def test_first_pattern_builds_classifier(tmp_path):
    telemetry = RecordingTelemetry()
    system = make_system(tmp_path, telemetry=telemetry)

    saved = system.add_pattern(rain())

    assert saved.type == "behavioral"
    assert system.classifier.is_ready
    assert system.classifier.label_map == ("behavioral",)

    names = [name for name, _ in telemetry.spans]
    assert names == ["memory.classifier_rebuild", "memory.add_pattern"]
    attributes = telemetry.spans[-1][1]
    assert attributes["pattern_type"] == "behavioral"
    assert attributes["items_extracted"] == 1
    assert attributes["classifier_path"] == "rebuild"
    assert attributes["success"] is True


def test_known_label_takes_incremental_path(tmp_path):
    telemetry = RecordingTelemetry()
    system = make_system(tmp_path, telemetry=telemetry)
    system.add_pattern(rain())
    history_before = len(system.classifier.get_training_history())

    system.add_pattern(snow())

    assert telemetry.spans[-1][1]["classifier_path"] == "incremental"
    assert len(system.classifier.get_training_history()) == history_before + 1


def test_new_label_triggers_rebuild(tmp_path):
    telemetry = RecordingTelemetry()
    system = make_system(tmp_path, telemetry=telemetry)
    system.add_pattern(rain())

    system.add_pattern(morning())

    assert telemetry.spans[-1][1]["classifier_path"] == "rebuild"
    rebuild = [attrs for name, attrs in telemetry.spans if name == "memory.classifier_rebuild"][-1]
    assert rebuild["training_examples"] == 2
    assert rebuild["num_classes"] == 2
    assert system.get_stats()["model"]["num_classes"] == 2


def test_failed_incremental_update_falls_back_to_rebuild(tmp_path):
    config = make_config(tmp_path)
    classifier = FailingUpdateClassifier(config.classifier)
    telemetry = RecordingTelemetry()
    system = MemorySystem(config=config, classifier=classifier, telemetry=telemetry)
    system.initialize()

    system.add_pattern(rain())
    system.add_pattern(snow())

    assert classifier.update_calls == 1
    assert telemetry.spans[-1][1]["classifier_path"] == "rebuild"
    assert classifier.is_ready


def test_knowledge_is_extracted_and_searchable(tmp_path):
    system = make_system(tmp_path)
    saved = system.add_pattern(rain())

    results = system.search_knowledge(KnowledgeQuery(text="umbrella"))
    assert [r.item.content for r in results] == ["When rain, then use umbrella"]
    assert results[0].item.pattern_id == saved.id
    assert system.search_knowledge({"tags": ["weather"]})[0].relevance_score == pytest.approx(1.0)


def test_resaved_pattern_replaces_its_knowledge(tmp_path):
    system = make_system(tmp_path)
    first = system.add_pattern(rain(confidence=0.5))
    second = system.add_pattern(rain(confidence=0.9))

    assert first.id == second.id
    items = system.knowledge_graph.items_for_pattern(second.id)
    assert len(items) == 1
    assert items[0].metadata.confidence == 0.9
    assert len(system.pattern_store.get_versions(second.id)) == 1


def test_resave_keeps_item_ids_and_relationships(tmp_path):
    system = make_system(tmp_path)
    first = system.add_pattern(rain(confidence=0.5))
    other = system.add_pattern(snow())
    rain_item = system.knowledge_graph.items_for_pattern(first.id)[0]
    snow_item = system.knowledge_graph.items_for_pattern(other.id)[0]
    system.knowledge_graph.add_relationship(
        KnowledgeRelationship(id="user", from_id=rain_item.id, to_id=snow_item.id, type="causal", strength=0.8)
    )

    system.add_pattern(rain(confidence=0.9))

    refreshed = system.knowledge_graph.items_for_pattern(first.id)
    assert [i.id for i in refreshed] == [rain_item.id]
    assert refreshed[0].metadata.confidence == 0.9
    relationship = system.knowledge_graph.get_relationship("user")
    assert relationship is not None
    assert relationship.type == "causal"


def test_unchanged_resave_leaves_store_and_knowledge_alone(tmp_path):
    telemetry = RecordingTelemetry()
    system = make_system(tmp_path, telemetry=telemetry)
    first = system.add_pattern(rain())
    item = system.knowledge_graph.items_for_pattern(first.id)[0]

    second = system.add_pattern(rain())

    assert second.updated_at == first.updated_at
    assert system.pattern_store.get_versions(first.id) == []
    assert [i.id for i in system.knowledge_graph.items_for_pattern(first.id)] == [item.id]
    attributes = telemetry.spans[-1][1]
    assert attributes["knowledge_refreshed"] is False
    assert attributes["items_extracted"] == 0


def test_search_patterns_and_rank(tmp_path):
    system = make_system(tmp_path)
    system.add_pattern(snow())
    system.add_pattern(rain(confidence=0.9, frequency=10))

    assert len(system.search_patterns(PatternQuery(type="behavioral"))) == 2
    assert system.search_patterns({"tags": ["routine"]}) == []

    ranked = system.rank_patterns()
    assert [w.features.confidence for w in ranked] == [0.9, 0.6]
    assert ranked[0].weight == pytest.approx(0.93)


def test_classify_pattern_uses_known_labels(tmp_path):
    system = make_system(tmp_path)
    system.add_pattern(rain())
    saved = system.add_pattern(morning())

    result = system.classify_pattern(saved)
    assert result.pattern_id == saved.id
    assert result.predicted_label in {"behavioral", "temporal"}


def test_find_related_knowledge_passes_through(tmp_path):
    system = make_system(tmp_path)
    system.add_pattern(rain())
    item = system.search_knowledge()[0].item
    assert system.find_related_knowledge(item.id) == []


def test_stats_cover_all_components(tmp_path):
    system = make_system(tmp_path)
    system.add_pattern(rain())
    stats = system.get_stats()

    assert stats["patterns"]["total_patterns"] == 1
    assert stats["knowledge"]["total_items"] == 1
    assert stats["model"]["is_initialized"] is True


def test_initialize_bootstraps_from_stored_patterns(tmp_path):
    first = make_system(tmp_path)
    first.add_pattern(rain())
    first.add_pattern(morning())
    first.shutdown()

    second = make_system(tmp_path)
    assert second.classifier.is_ready
    assert set(second.classifier.label_map) == {"behavioral", "temporal"}
    assert second.classifier.get_training_history() == []
    assert second.get_stats()["knowledge"]["total_items"] == 2


def test_rebuild_skips_expired_patterns(tmp_path):
    telemetry = RecordingTelemetry()
    system = make_system(tmp_path, telemetry=telemetry)
    stale = morning()
    stale["expires_at"] = datetime.now(timezone.utc) - timedelta(seconds=1)
    system.add_pattern(stale)
    system.add_pattern(rain())

    rebuild = [attrs for name, attrs in telemetry.spans if name == "memory.classifier_rebuild"][-1]
    assert rebuild["training_examples"] == 1
    assert system.classifier.label_map == ("behavioral",)


def test_shutdown_saves_model_and_initialize_loads_it(tmp_path):
    model_dir = tmp_path / "model"
    first = make_system(tmp_path, model_dir=model_dir)
    first.add_pattern(rain())
    trained_epochs = len(first.classifier.get_training_history())
    first.shutdown()

    assert not first.classifier.is_ready
    assert (model_dir / "model.pt").exists()

    second = make_system(tmp_path, model_dir=model_dir)
    assert second.classifier.is_ready
    assert len(second.classifier.get_training_history()) == trained_epochs


def test_config_from_env(tmp_path):
    config = MemorySystemConfig.from_env(
        {
            "ENGRAM_DATA_DIR": str(tmp_path),
            "ENGRAM_MAX_VERSIONS": "3",
            "ENGRAM_EXPIRATION_DAYS": "7",
            "ENGRAM_MAX_ITEMS": "50",
            "ENGRAM_PERSISTENCE": "false",
            "ENGRAM_EPOCHS": "4",
        }
    )
    assert config.patterns.data_dir == tmp_path / "patterns"
    assert config.knowledge.data_dir == tmp_path / "knowledge"
    assert config.model_dir == tmp_path / "model"
    assert config.patterns.max_versions == 3
    assert config.patterns.default_expiration_days == 7
    assert config.knowledge.max_items == 50
    assert config.knowledge.enable_persistence is False
    assert config.classifier.epochs == 4


def test_config_from_env_defaults():
    config = MemorySystemConfig.from_env({})
    assert config.model_dir is None
    assert config.patterns.max_versions == 10
    assert config.knowledge.enable_persistence is True
