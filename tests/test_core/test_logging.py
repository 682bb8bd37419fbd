"""
Tests for structured log formatting.
"""

import json
import logging

from medguard.core.logging import (
    ConsoleFormatter,
    CorrelationIdFilter,
    JSONFormatter,
    correlation_id,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("medguard.test", logging.WARNING, __file__, 1, "Stage %s failed", ("assess_risk",), None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_promotes_extra_fields():
    """Test extra fields become top-level JSON keys."""
    record = make_record(error_type="ProviderError", retries=2)

    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "Stage assess_risk failed"
    assert entry["level"] == "WARNING"
    assert entry["error_type"] == "ProviderError"
    assert entry["retries"] == 2
    assert "msg" not in entry


def test_filter_stamps_active_correlation_id():
    """Test the active correlation id is stamped on records."""
    record = make_record()
    token = correlation_id.set("check-1")
    try:
        CorrelationIdFilter().filter(record)
    finally:
        correlation_id.reset(token)

    assert record.correlation_id == "check-1"
    assert json.loads(JSONFormatter().format(record))["correlation_id"] == "check-1"


def test_console_formatter_shows_correlation_id_and_fields():
    """Test console output shows the correlation id and fields."""
    record = make_record(correlation_id="check-2", stage="assess_risk")

    line = ConsoleFormatter().format(record)

    assert "<check-2>" in line
    assert "stage=assess_risk" in line
    assert "correlation_id=" not in line
