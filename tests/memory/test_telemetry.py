import logging

import pytest

from engram.memory.telemetry import ADD_PATTERN_SPAN, CLASSIFIER_REBUILD_SPAN, MemorySpan, MemoryTelemetry


def test_span_records_typed_fields_and_duration():
    records = []
    telemetry = MemoryTelemetry(sink=records.append)

    with telemetry.span(ADD_PATTERN_SPAN) as span:
        span.pattern_type = "behavioral"
        span.items_extracted = 1
        span.classifier_path = "incremental"

    (record,) = records
    assert record.name == "memory.add_pattern"
    assert record.success is True
    assert record.duration_ms >= 0.0
    assert record.attributes() == {
        "duration_ms": record.duration_ms,
        "success": True,
        "pattern_type": "behavioral",
        "items_extracted": 1,
        "classifier_path": "incremental",
    }


def test_span_marks_failure_and_reraises():
    records = []
    telemetry = MemoryTelemetry(sink=records.append)

    with pytest.raises(KeyError):
        with telemetry.span(CLASSIFIER_REBUILD_SPAN) as span:
            span.training_examples = 3
            raise KeyError("x")

    record = records[0]
    assert record.success is False
    assert record.error == "KeyError"
    assert record.training_examples == 3
    assert record.num_classes is None


def test_disabled_telemetry_emits_nothing():
    records = []
    telemetry = MemoryTelemetry(sink=records.append, enabled=False)
    with telemetry.span(ADD_PATTERN_SPAN) as span:
        span.pattern_type = "temporal"
    assert records == []


def test_default_sink_logs_record(caplog):
    telemetry = MemoryTelemetry(level=logging.INFO)
    with caplog.at_level(logging.INFO, logger="engram.memory.telemetry"):
        with telemetry.span(CLASSIFIER_REBUILD_SPAN) as span:
            span.num_classes = 2

    assert "[telemetry] memory.classifier_rebuild" in caplog.text
    assert "'num_classes': 2" in caplog.text


def test_unset_fields_are_left_out_of_attributes():
    assert MemorySpan(name="memory.add_pattern").attributes() == {"duration_ms": 0.0, "success": True}
