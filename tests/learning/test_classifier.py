import pytest

from engram.errors import ClassifierNotReadyError, ClassifierUpdateError, PersistenceError
from engram.learning.classifier import ClassifierConfig, PatternClassifier, PatternFeatures


def small_config(**overrides):
    values = {"hidden_layers": (8, 4), "epochs": 2, "batch_size": 4, "seed": 0, "dropout_rate": 0.0}
    values.update(overrides)
    return ClassifierConfig(**values)


def example(idx, label, features=None, confidence=0.5, frequency=1):
    if features is None:
        features = [1.0, 0.0, 0.0, 0.0] if label == "left" else [0.0, 0.0, 0.0, 1.0]
    return PatternFeatures(
        id=f"p{idx}", features=features, label=label, confidence=confidence, frequency=frequency
    )


def corpus():
    return [example(i, "left" if i % 2 == 0 else "right") for i in range(8)]


def ready_classifier(**overrides):
    classifier = PatternClassifier(small_config(**overrides))
    classifier.initialize(corpus())
    return classifier


def test_classify_before_initialize_fails():
    classifier = PatternClassifier(small_config())
    with pytest.raises(ClassifierNotReadyError):
        classifier.classify([0.0, 0.0, 0.0, 0.0])
    with pytest.raises(ClassifierNotReadyError):
        classifier.train(corpus())
    assert classifier.get_stats()["is_initialized"] is False


def test_initialize_fixes_labels_and_input_size():
    classifier = ready_classifier()
    stats = classifier.get_stats()

    assert stats["is_initialized"] is True
    assert stats["num_classes"] == 2
    assert stats["input_size"] == 4
    assert stats["num_parameters"] > 0
    assert classifier.label_map == ("left", "right")


def test_initialize_is_noop_when_ready():
    classifier = ready_classifier()
    classifier.initialize([example(0, "other", features=[0.0] * 7)])
    assert classifier.label_map == ("left", "right")
    assert classifier.input_size == 4


def test_initialize_requires_examples():
    with pytest.raises(ValueError):
        PatternClassifier(small_config()).initialize([])


def test_configured_input_size_wins():
    classifier = PatternClassifier(small_config(input_size=6))
    classifier.initialize([example(0, "a", features=[0.0] * 6)])
    assert classifier.input_size == 6


def test_classify_returns_distribution():
    classifier = ready_classifier()
    result = classifier.classify([1.0, 0.0, 0.0, 0.0], pattern_id="p0")

    assert result.pattern_id == "p0"
    assert set(result.probabilities) == {"left", "right"}
    assert sum(result.probabilities.values()) == pytest.approx(1.0, abs=1e-5)
    assert result.confidence == pytest.approx(max(result.probabilities.values()))
    assert result.predicted_label == max(result.probabilities, key=result.probabilities.get)


def test_classify_rejects_wrong_length():
    classifier = ready_classifier()
    with pytest.raises(ValueError):
        classifier.classify([1.0, 0.0])


def test_classify_many_keeps_ids():
    classifier = ready_classifier()
    results = classifier.classify_many(corpus()[:3])
    assert [r.pattern_id for r in results] == ["p0", "p1", "p2"]
    assert classifier.classify_many([]) == []


def test_weights_rank_confidence_and_frequency():
    strong = example(1, "left", confidence=0.9, frequency=10)
    weak = example(2, "left", confidence=0.5, frequency=1)

    assert PatternClassifier.weight(strong) == pytest.approx(0.93)
    assert PatternClassifier.weight({"confidence": 0.5, "frequency": 1}) == pytest.approx(0.38)
    assert PatternClassifier.weight({"confidence": 0.0, "frequency": 500}) == pytest.approx(0.3)

    ranked = PatternClassifier.apply_weights([weak, strong])
    assert [w.id for w in ranked] == ["p1", "p2"]
    assert ranked[0].features is strong


def test_train_reports_progress_and_learns():
    classifier = ready_classifier(epochs=30, learning_rate=0.01)
    seen = []

    metrics = classifier.train(corpus(), on_progress=seen.append)

    assert [p.epoch for p in seen] == list(range(1, 31))
    history = classifier.get_training_history()
    assert len(history) == 30
    assert history[-1].loss < history[0].loss
    assert metrics.loss == pytest.approx(history[-1].loss)
    assert 0.0 <= metrics.accuracy <= 1.0


def test_train_rejects_unknown_labels():
    classifier = ready_classifier()
    with pytest.raises(ClassifierUpdateError):
        classifier.train([example(0, "up")])


@pytest.mark.parametrize("field", ["epochs", "batch_size"])
def test_config_rejects_non_positive_epochs_and_batch_size(field):
    with pytest.raises(ValueError, match=field):
        ClassifierConfig(**{field: 0})


def test_train_rejects_epochs_zeroed_after_construction():
    classifier = ready_classifier()
    classifier.config.epochs = 0
    with pytest.raises(ValueError):
        classifier.train(corpus())
    assert classifier.get_training_history() == []


def test_incremental_update_runs_half_the_epochs():
    classifier = ready_classifier(epochs=4)
    classifier.update([example(9, "left")])
    assert len(classifier.get_training_history()) == 2

    single = ready_classifier(epochs=1)
    single.update([example(9, "left")])
    assert len(single.get_training_history()) == 1


def test_incremental_update_rejects_new_labels():
    classifier = ready_classifier()
    new = [example(9, "up")]

    assert classifier.has_unseen_labels(new)
    assert not classifier.has_unseen_labels(corpus())
    with pytest.raises(ClassifierUpdateError):
        classifier.update(new)


def test_full_update_runs_all_epochs():
    classifier = ready_classifier(epochs=3)
    classifier.update(corpus(), incremental=False)
    assert len(classifier.get_training_history()) == 3


def test_save_and_load_round_trip(tmp_path):
    classifier = ready_classifier()
    classifier.train(corpus())
    before = classifier.classify([1.0, 0.0, 0.0, 0.0]).probabilities
    classifier.save(tmp_path / "model")

    assert (tmp_path / "model" / "model.pt").exists()
    assert (tmp_path / "model" / "metadata.json").exists()
    assert PatternClassifier.saved_model_exists(tmp_path / "model")

    restored = PatternClassifier(ClassifierConfig())
    restored.load(tmp_path / "model")

    assert restored.label_map == ("left", "right")
    assert restored.input_size == 4
    assert restored.config.hidden_layers == (8, 4)
    assert len(restored.get_training_history()) == 2
    after = restored.classify([1.0, 0.0, 0.0, 0.0]).probabilities
    assert after == pytest.approx(before)


def test_load_missing_model_raises(tmp_path):
    classifier = ready_classifier()
    with pytest.raises(PersistenceError):
        classifier.load(tmp_path / "nowhere")
    # failed load leaves the current model in place
    assert classifier.is_ready


def test_dispose_is_idempotent():
    classifier = ready_classifier()
    classifier.dispose()
    classifier.dispose()

    assert not classifier.is_ready
    assert classifier.get_stats()["num_parameters"] == 0
    with pytest.raises(ClassifierNotReadyError):
        classifier.classify([0.0, 0.0, 0.0, 0.0])
