def test_import_memory_components():
    from engram.memory import (  # noqa: F401
        KnowledgeGraph,
        MemorySystem,
        MemorySystemConfig,
        PatternStore,
    )


def test_import_learning_components():
    from engram.learning import (  # noqa: F401
        FEATURE_HASH_VERSION,
        PatternClassifier,
        PatternClassifierNet,
        features_from_record,
    )


def test_import_errors():
    from engram.errors import (  # noqa: F401
        ClassifierNotReadyError,
        ClassifierUpdateError,
        EngramError,
        NotInitializedError,
        PersistenceError,
    )
