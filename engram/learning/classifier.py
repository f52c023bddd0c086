#!/usr/bin/env python3
"""
Pattern Classifier with Incremental Updates
============================================

Supervised multi-class labelling of pattern feature vectors.

Lifecycle:
- initialize(features): fixes input size and the label map, builds the network
- train / update: full training or a short incremental pass on new data only
- save / load: state dict (model.pt) + metadata.json in a directory
- dispose(): releases the network and optimiser; every initialize/load must
  be paired with a dispose

The label map is fixed at initialization. ``update`` refuses data carrying
labels outside it (``ClassifierUpdateError``); callers must then dispose,
reinitialize on the full corpus and retrain.

Weighting (independent of the trained model):
    weight = 0.7 * confidence + 0.3 * min(frequency / 10, 1)
"""

from __future__ import annotations

import dataclasses
import json
import logging
import pickle
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import torch
from torch import Tensor, nn
from torch.optim import Adam

from ..errors import ClassifierNotReadyError, ClassifierUpdateError, PersistenceError
from .features import DEFAULT_FEATURE_SIZE, FEATURE_HASH_VERSION
from .model import PatternClassifierNet

logger = logging.getLogger(__name__)

MODEL_FILE = "model.pt"
METADATA_FILE = "metadata.json"

CONFIDENCE_WEIGHT = 0.7
FREQUENCY_WEIGHT = 0.3
FREQUENCY_SATURATION = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ClassifierConfig:
    """Classifier configuration."""

    # Model architecture
    input_size: Optional[int] = None  # None: taken from the first training vector
    hidden_layers: Tuple[int, ...] = (64, 32)
    dropout_rate: float = 0.2

    # Training
    learning_rate: float = 0.001
    batch_size: int = 32
    epochs: int = 10

    device: str = "cpu"
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.epochs < 1:
            raise ValueError(f"epochs must be at least 1, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["hidden_layers"] = list(self.hidden_layers)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClassifierConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "hidden_layers" in values:
            values["hidden_layers"] = tuple(values["hidden_layers"])
        return cls(**values)


@dataclass(slots=True)
class PatternFeatures:
    """Labelled feature vector for one pattern."""

    id: str
    features: List[float]
    label: str
    confidence: float = 0.0
    frequency: int = 0
    timestamp: Optional[datetime] = None


@dataclass(slots=True)
class ClassificationResult:
    pattern_id: Optional[str]
    predicted_label: str
    confidence: float
    probabilities: Dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class WeightedPattern:
    id: str
    weight: float
    features: PatternFeatures


@dataclass(slots=True)
class TrainingProgress:
    epoch: int
    loss: float
    accuracy: float
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch,
            "loss": self.loss,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrainingProgress":
        return cls(
            epoch=int(data["epoch"]),
            loss=float(data["loss"]),
            accuracy=float(data["accuracy"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(slots=True)
class TrainingMetrics:
    accuracy: float
    loss: float
    timestamp: datetime = field(default_factory=_now)


ProgressCallback = Callable[[TrainingProgress], None]


class PatternClassifier:
    """Owns the classifier network, its label map and its training history."""

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        self.config = config or ClassifierConfig()
        self.device = torch.device(self.config.device)

        self._model: Optional[PatternClassifierNet] = None
        self._optimizer: Optional[Adam] = None
        self._criterion = nn.CrossEntropyLoss()

        self._input_size: int = self.config.input_size or DEFAULT_FEATURE_SIZE
        self._label_map: List[str] = []
        self._inverse_label_map: Dict[str, int] = {}
        self._training_history: List[TrainingProgress] = []

    # ------------------ lifecycle ------------------
    @property
    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def input_size(self) -> int:
        return self._input_size

    @property
    def label_map(self) -> Tuple[str, ...]:
        return tuple(self._label_map)

    def initialize(self, features: Sequence[PatternFeatures]) -> None:
        """Fix input size and label set from ``features`` and build the network."""
        if self.is_ready:
            return
        if not features:
            raise ValueError("Classifier initialization requires at least one labelled example")

        self._input_size = self.config.input_size or len(features[0].features)
        self._set_labels(list(dict.fromkeys(f.label for f in features)))
        self._build()
        logger.info(
            f"Classifier initialized: input_size={self._input_size}, "
            f"labels={self._label_map}, parameters={self._model.num_parameters()}"
        )

    def dispose(self) -> None:
        """Release the network and optimiser. Safe to call more than once."""
        if self._model is not None:
            logger.debug("Disposing classifier model")
        self._model = None
        self._optimizer = None
        self._label_map = []
        self._inverse_label_map = {}
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    # ------------------ inference ----------------
    def classify(self, vector: Sequence[float], *, pattern_id: Optional[str] = None) -> ClassificationResult:
        self._ensure_ready()
        probs = self._model.predict_proba(self._to_tensor([vector]))[0].cpu().tolist()
        return self._result(pattern_id, probs)

    def classify_many(self, patterns: Sequence[PatternFeatures]) -> List[ClassificationResult]:
        self._ensure_ready()
        if not patterns:
            return []
        batch = self._model.predict_proba(self._to_tensor([p.features for p in patterns])).cpu().tolist()
        return [self._result(p.id, probs) for p, probs in zip(patterns, batch)]

    # ------------------ weighting ----------------
    @staticmethod
    def weight(pattern: PatternFeatures | Mapping[str, Any]) -> float:
        if isinstance(pattern, Mapping):
            confidence, frequency = pattern["confidence"], pattern["frequency"]
        else:
            confidence, frequency = pattern.confidence, pattern.frequency
        return CONFIDENCE_WEIGHT * confidence + FREQUENCY_WEIGHT * min(frequency / FREQUENCY_SATURATION, 1.0)

    @classmethod
    def apply_weights(cls, patterns: Sequence[PatternFeatures]) -> List[WeightedPattern]:
        weighted = [WeightedPattern(id=p.id, weight=cls.weight(p), features=p) for p in patterns]
        weighted.sort(key=lambda w: w.weight, reverse=True)
        return weighted

    # ------------------ training -----------------
    def has_unseen_labels(self, features: Sequence[PatternFeatures]) -> bool:
        return any(f.label not in self._inverse_label_map for f in features)

    def train(
        self,
        features: Sequence[PatternFeatures],
        on_progress: Optional[ProgressCallback] = None,
    ) -> TrainingMetrics:
        """
        Train for ``config.epochs`` epochs.

        Args:
            features: Labelled examples (labels must be in the label map)
            on_progress: Called once per completed epoch

        Returns:
            Accuracy and loss of the final epoch
        """
        self._ensure_ready()
        if self.has_unseen_labels(features):
            raise ClassifierUpdateError(
                f"Training data has labels outside {self._label_map}; reinitialize first"
            )
        return self._fit(features, self.config.epochs, on_progress)

    def update(self, features: Sequence[PatternFeatures], incremental: bool = True) -> TrainingMetrics:
        """
        Fold new examples into the model.

        Incremental updates run ``max(1, epochs // 2)`` epochs over ``features``
        only and cannot introduce labels; both failure modes raise
        ``ClassifierUpdateError``. ``incremental=False`` is a full ``train``.
        """
        self._ensure_ready()
        if not incremental:
            return self.train(features)

        if self.has_unseen_labels(features):
            unseen = sorted({f.label for f in features} - set(self._label_map))
            raise ClassifierUpdateError(f"Incremental update cannot add labels {unseen}")

        epochs = max(1, self.config.epochs // 2)
        try:
            return self._fit(features, epochs)
        except (RuntimeError, ValueError) as exc:
            raise ClassifierUpdateError(f"Incremental update failed: {exc}") from exc

    def get_training_history(self) -> List[TrainingProgress]:
        return list(self._training_history)

    # ------------------ persistence --------------
    def save(self, path: Path | str) -> None:
        self._ensure_ready()
        path = Path(path)
        config = self.config.to_dict()
        config["input_size"] = self._input_size
        metadata = {
            "label_map": self._label_map,
            "input_size": self._input_size,
            "config": config,
            "feature_hash_version": FEATURE_HASH_VERSION,
            "training_history": [p.to_dict() for p in self._training_history],
        }
        try:
            path.mkdir(parents=True, exist_ok=True)
            torch.save(self._model.state_dict(), path / MODEL_FILE)
            with (path / METADATA_FILE).open("w", encoding="utf-8") as fh:
                json.dump(metadata, fh, indent=2)
        except OSError as exc:
            raise PersistenceError(f"Failed to save classifier to {path}: {exc}") from exc
        logger.info(f"Saved classifier to {path}")

    def load(self, path: Path | str) -> None:
        """Replace the current model with the one saved at ``path``."""
        path = Path(path)
        try:
            with (path / METADATA_FILE).open("r", encoding="utf-8") as fh:
                metadata = json.load(fh)
            input_size = int(metadata["input_size"])
            labels = list(metadata["label_map"])
            loaded = ClassifierConfig.from_dict(metadata.get("config", {}))
            state = torch.load(path / MODEL_FILE, map_location=self.device, weights_only=True)
        except (OSError, ValueError, KeyError, TypeError, RuntimeError, pickle.UnpicklingError) as exc:
            raise PersistenceError(f"Failed to load classifier from {path}: {exc}") from exc

        self.dispose()
        self.config = dataclasses.replace(loaded, device=self.config.device)
        self._input_size = input_size
        self._set_labels(labels)
        self._build()
        try:
            self._model.load_state_dict(state)
        except RuntimeError as exc:
            self.dispose()
            raise PersistenceError(f"Saved weights at {path} do not match the saved architecture: {exc}") from exc
        self._model.eval()
        self._training_history = [TrainingProgress.from_dict(p) for p in metadata.get("training_history", [])]
        logger.info(f"Loaded classifier from {path}: labels={self._label_map}")

    @staticmethod
    def saved_model_exists(path: Path | str) -> bool:
        path = Path(path)
        return (path / MODEL_FILE).exists() and (path / METADATA_FILE).exists()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_initialized": self.is_ready,
            "num_classes": len(self._label_map),
            "input_size": self._input_size,
            "num_parameters": self._model.num_parameters() if self._model is not None else 0,
        }

    # ------------------ internals ----------------
    def _ensure_ready(self) -> None:
        if self._model is None:
            raise ClassifierNotReadyError("Classifier is not initialized; call initialize() or load() first")

    def _set_labels(self, labels: List[str]) -> None:
        self._label_map = labels
        self._inverse_label_map = {label: index for index, label in enumerate(labels)}

    def _build(self) -> None:
        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)
        self._model = PatternClassifierNet(
            in_channels=self._input_size,
            num_classes=len(self._label_map),
            hidden_layers=self.config.hidden_layers,
            dropout=self.config.dropout_rate,
        ).to(self.device)
        self._optimizer = Adam(self._model.parameters(), lr=self.config.learning_rate)

    def _to_tensor(self, vectors: Sequence[Sequence[float]]) -> Tensor:
        arr = np.asarray(vectors, dtype=np.float32)
        if arr.ndim != 2 or arr.shape[1] != self._input_size:
            raise ValueError(f"Expected feature vectors of length {self._input_size}, got shape {arr.shape}")
        return torch.from_numpy(arr).to(self.device)

    def _result(self, pattern_id: Optional[str], probs: List[float]) -> ClassificationResult:
        best = int(np.argmax(probs))
        return ClassificationResult(
            pattern_id=pattern_id,
            predicted_label=self._label_map[best],
            confidence=float(probs[best]),
            probabilities={label: float(p) for label, p in zip(self._label_map, probs)},
        )

    def _fit(
        self,
        features: Sequence[PatternFeatures],
        epochs: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TrainingMetrics:
        if not features:
            raise ValueError("Cannot train on an empty example set")
        if epochs < 1 or self.config.batch_size < 1:
            raise ValueError(f"Need epochs >= 1 and batch_size >= 1, got {epochs} and {self.config.batch_size}")

        x = self._to_tensor([f.features for f in features])
        y = torch.tensor([self._inverse_label_map[f.label] for f in features], dtype=torch.long, device=self.device)
        num_examples = x.shape[0]

        self._model.train()
        progress: Optional[TrainingProgress] = None
        for epoch in range(epochs):
            perm = torch.randperm(num_examples, device=self.device)
            total_loss = 0.0
            correct = 0

            for start in range(0, num_examples, self.config.batch_size):
                batch_idx = perm[start : start + self.config.batch_size]
                batch_x, batch_y = x[batch_idx], y[batch_idx]

                logits = self._model(batch_x)
                loss = self._criterion(logits, batch_y)

                self._optimizer.zero_grad()
                loss.backward()
                self._optimizer.step()

                total_loss += loss.item() * batch_idx.numel()
                correct += int((logits.argmax(dim=1) == batch_y).sum().item())

            progress = TrainingProgress(
                epoch=epoch + 1,
                loss=total_loss / num_examples,
                accuracy=correct / num_examples,
            )
            self._training_history.append(progress)
            logger.debug(
                f"Epoch {progress.epoch}/{epochs} | Loss: {progress.loss:.4f} | Acc: {progress.accuracy:.3f}"
            )
            if on_progress is not None:
                on_progress(progress)

        self._model.eval()
        return TrainingMetrics(accuracy=progress.accuracy, loss=progress.loss)


__all__ = [
    "ClassificationResult",
    "ClassifierConfig",
    "PatternClassifier",
    "PatternFeatures",
    "ProgressCallback",
    "TrainingMetrics",
    "TrainingProgress",
    "WeightedPattern",
]
