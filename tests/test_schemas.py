"""Tests for record and summary schema validation."""

from __future__ import annotations

from datetime import UTC, datetime

import orjson
import pytest

from review_queue.errors import SchemaValidationError
from review_queue.schemas import (
    DatasetPointers,
    MergedRecord,
    QueueTotals,
    RecordType,
    Summary,
    WaitEstimate,
    WaitEstimates,
    WeeklyAggregate,
    dump_records,
    dump_summary,
    load_merged_records,
    load_open_records,
    load_summary,
    parse_timestamp,
)


def test_summary_document_uses_camel_case_keys() -> None:
    """The published summary should expose the documented field names."""
    summary = Summary(
        checked_at=datetime(2026, 3, 1, 12, tzinfo=UTC),
        page1_etag='W/"abc"',
        latest_merged_at=datetime(2026, 2, 27, tzinfo=UTC),
        totals=QueueTotals(ready_total=3, ready_plugins=2, ready_themes=1),
        wait_estimates=WaitEstimates(
            plugin=WaitEstimate(estimated_days=11, lower=1, upper=20, is_high_variance=True),
            theme=WaitEstimate(estimated_days=None, lower=None, upper=None, is_high_variance=False),
        ),
        weekly_merged=WeeklyAggregate(
            week_starts=[datetime(2026, 2, 22, tzinfo=UTC)],
            plugin_counts=[2],
            theme_counts=[0],
        ),
        datasets=DatasetPointers(open_queue=None, merged_history=None),
    )

    payload = orjson.loads(dump_summary(summary))

    assert payload["checkedAt"] == "2026-03-01T12:00:00Z"
    assert payload["page1ETag"] == 'W/"abc"'
    assert payload["waitEstimates"]["plugin"] == {
        "estimatedDays": 11,
        "range": {"lower": 1, "upper": 20},
        "isHighVariance": True,
    }
    assert payload["weeklyMerged"]["weekStarts"] == ["2026-02-22T00:00:00Z"]
    assert payload["datasets"] == {"openQueue": None, "mergedHistory": None}
    assert load_summary(dump_summary(summary)) == summary


def test_record_loaders_reject_structural_errors() -> None:
    """Missing fields, unknown type strings, and negative durations should fail validation."""
    with pytest.raises(SchemaValidationError):
        load_open_records('[{"id": 1, "title": "x", "url": "u", "type": "plugin"}]')
    with pytest.raises(SchemaValidationError):
        load_open_records(
            '[{"id": 1, "title": "x", "url": "u", "type": "widget", "createdAt": "2026-03-01T00:00:00Z"}]'
        )
    with pytest.raises(SchemaValidationError):
        load_merged_records(
            '[{"id": 1, "title": "x", "url": "u", "type": "theme", "createdAt": "2026-03-01T00:00:00Z",'
            ' "mergedAt": "2026-03-02T00:00:00Z", "daysToMerge": -1}]'
        )
    with pytest.raises(SchemaValidationError):
        load_open_records('{"not": "a list"}')


def test_merged_records_serialize_deterministically() -> None:
    """Equal record lists should serialize to identical bytes so their hashes match."""
    record = MergedRecord(
        id=7,
        title="Add entry",
        url="https://github.com/acme/releases/pull/7",
        record_type=RecordType.UNKNOWN,
        created_at=datetime(2026, 2, 1, tzinfo=UTC),
        merged_at=datetime(2026, 2, 3, tzinfo=UTC),
        days_to_merge=2,
    )

    assert dump_records([record]) == dump_records([record])
    assert load_merged_records(dump_records([record])) == [record]


def test_parse_timestamp_requires_offset() -> None:
    """Naive timestamps are ambiguous and rejected."""
    assert parse_timestamp("2026-03-01T00:00:00Z") == datetime(2026, 3, 1, tzinfo=UTC)
    with pytest.raises(SchemaValidationError):
        parse_timestamp("2026-03-01T00:00:00")
