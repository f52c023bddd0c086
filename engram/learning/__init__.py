"""
Pattern Learning - Feature encoding and incremental classification

WHAT: Supervised labelling of pattern feature vectors plus pattern weighting
WHERE: engram/learning/ - learning subsystem beneath MemorySystem
WHO: MemorySystem folding new patterns in; callers ranking or classifying patterns
TIME: Incremental update runs half the configured epochs on new data only

Pipeline:
```
pattern.data -> features_from_record -> PatternFeatures -> PatternClassifier
```

Boundary Notes:
- Label set is fixed at initialize(); new labels need a full rebuild
- Model weights saved as a torch state dict, metadata as JSON
"""

from .classifier import (  # noqa: F401
    ClassificationResult,
    ClassifierConfig,
    PatternClassifier,
    PatternFeatures,
    TrainingMetrics,
    TrainingProgress,
    WeightedPattern,
)
from .features import FEATURE_HASH_VERSION, features_from_record, normalize_features  # noqa: F401
from .model import PatternClassifierNet  # noqa: F401

__all__ = [
    "ClassificationResult",
    "ClassifierConfig",
    "FEATURE_HASH_VERSION",
    "PatternClassifier",
    "PatternClassifierNet",
    "PatternFeatures",
    "TrainingMetrics",
    "TrainingProgress",
    "WeightedPattern",
    "features_from_record",
    "normalize_features",
]
