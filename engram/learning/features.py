#!/usr/bin/env python3
"""
Pattern Feature Encoding
========================

Fixed-length numeric encoding of arbitrary pattern data for the classifier.

Encoding (FEATURE_HASH_VERSION = 1):
- Values are taken in the record's insertion order
- Numbers pass through unchanged
- Booleans map to 1.0 / 0.0
- Strings map to abs(rolling_hash(s)) % 1000 / 1000, a scalar in [0, 1)
- Anything else (lists, mappings, None) is skipped
- The result is truncated or zero-padded to the requested size

The rolling hash is the classic 32-bit ``h = h*31 + unit`` over UTF-16 code
units with two's-complement wraparound, so encodings stay identical to
vectors produced by other implementations of the same version.
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence

import numpy as np

FEATURE_HASH_VERSION = 1
DEFAULT_FEATURE_SIZE = 100
TEXT_HASH_BUCKETS = 1000


class FeatureKind(str, Enum):
    NUMBER = "number"
    BOOL = "bool"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class FeatureValue:
    """Tagged scalar extracted from a record value."""

    kind: FeatureKind
    value: Any

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["FeatureValue"]:
        # bool is a subclass of int; check it first
        if isinstance(raw, (bool, np.bool_)):
            return cls(FeatureKind.BOOL, bool(raw))
        if isinstance(raw, numbers.Real):
            return cls(FeatureKind.NUMBER, float(raw))
        if isinstance(raw, str):
            return cls(FeatureKind.TEXT, raw)
        return None

    def encode(self) -> float:
        if self.kind is FeatureKind.BOOL:
            return 1.0 if self.value else 0.0
        if self.kind is FeatureKind.NUMBER:
            return float(self.value)
        return text_feature(self.value)


def rolling_hash(text: str) -> int:
    """32-bit signed rolling hash (h = h*31 + code unit) over UTF-16 code units."""
    h = 0
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    return h - 0x100000000 if h >= 0x80000000 else h


def text_feature(text: str) -> float:
    return (abs(rolling_hash(text)) % TEXT_HASH_BUCKETS) / TEXT_HASH_BUCKETS


def normalize_features(values: Sequence[float]) -> List[float]:
    """
    Min-max scale ``values`` into [0, 1].

    All-equal input maps every element to 0.5; empty input stays empty.
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return []
    lo, hi = arr.min(), arr.max()
    if hi == lo:
        return [0.5] * int(arr.size)
    return ((arr - lo) / (hi - lo)).tolist()


def features_from_record(record: Mapping[str, Any], size: int = DEFAULT_FEATURE_SIZE) -> List[float]:
    """
    Flatten a key/value record into a fixed-length feature vector.

    Args:
        record: Pattern data (values in insertion order)
        size: Output vector length

    Returns:
        List of ``size`` floats
    """
    encoded: List[float] = []
    for raw in record.values():
        value = FeatureValue.from_raw(raw)
        if value is not None:
            encoded.append(value.encode())

    if len(encoded) >= size:
        return encoded[:size]
    return encoded + [0.0] * (size - len(encoded))


__all__ = [
    "DEFAULT_FEATURE_SIZE",
    "FEATURE_HASH_VERSION",
    "FeatureKind",
    "FeatureValue",
    "features_from_record",
    "normalize_features",
    "rolling_hash",
    "text_feature",
]
