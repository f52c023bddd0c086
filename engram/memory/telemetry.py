"""
Memory Telemetry - Timed records of add_pattern and classifier rebuilds

WHAT: Typed span records for the memory pipeline, timed and handed to a sink
WHERE: engram/memory/telemetry.py - observability seam for MemorySystem
WHO: MemorySystem fills the fields; callers pass a sink to collect records
TIME: One perf_counter pair per span

Span vocabulary:
- memory.add_pattern          pattern_type, items_extracted, knowledge_refreshed,
                              classifier_path ("incremental" | "rebuild")
- memory.classifier_rebuild   training_examples, num_classes

Without a sink, finished records are written to this module's logger.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Literal, Optional

logger = logging.getLogger(__name__)

ADD_PATTERN_SPAN = "memory.add_pattern"
CLASSIFIER_REBUILD_SPAN = "memory.classifier_rebuild"

ClassifierPath = Literal["incremental", "rebuild"]


@dataclass(slots=True)
class MemorySpan:
    """Outcome of one timed memory operation; unset fields stay None."""

    name: str
    duration_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None

    # memory.add_pattern
    pattern_type: Optional[str] = None
    items_extracted: Optional[int] = None
    knowledge_refreshed: Optional[bool] = None
    classifier_path: Optional[ClassifierPath] = None

    # memory.classifier_rebuild
    training_examples: Optional[int] = None
    num_classes: Optional[int] = None

    def attributes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if f.name != "name" and getattr(self, f.name) is not None
        }


SpanSink = Callable[[MemorySpan], None]


class MemoryTelemetry:
    """
    Times memory operations and delivers one MemorySpan per operation.

    Example:
        records = []
        telemetry = MemoryTelemetry(sink=records.append)
        with telemetry.span(ADD_PATTERN_SPAN) as span:
            span.pattern_type = "behavioral"
    """

    def __init__(self, sink: SpanSink | None = None, *, level: int = logging.DEBUG, enabled: bool = True) -> None:
        self.sink = sink
        self.level = level
        self.enabled = enabled

    @contextmanager
    def span(self, name: str) -> Iterator[MemorySpan]:
        record = MemorySpan(name=name)
        start = time.perf_counter()
        try:
            yield record
        except Exception as exc:
            record.success = False
            record.error = type(exc).__name__
            raise
        finally:
            record.duration_ms = (time.perf_counter() - start) * 1000.0
            if self.enabled:
                self._emit(record)

    def _emit(self, record: MemorySpan) -> None:
        if self.sink is not None:
            self.sink(record)
            return
        if logger.isEnabledFor(self.level):
            logger.log(self.level, f"[telemetry] {record.name}: {record.attributes()}")


__all__ = [
    "ADD_PATTERN_SPAN",
    "CLASSIFIER_REBUILD_SPAN",
    "ClassifierPath",
    "MemorySpan",
    "MemoryTelemetry",
    "SpanSink",
]
