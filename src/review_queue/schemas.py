"""Typed schemas for queue records, dataset pointers, and the published summary.

Every type here round-trips through the camelCase JSON documents that the
read path serves. Parsing is strict: a missing or mistyped field raises
`SchemaValidationError`, which callers treat as a cache miss.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import orjson

from .errors import SchemaValidationError

DATASET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,62}$")
VERSION_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,126}$")
HASH_PATTERN = re.compile(r"^[A-Fa-f0-9]{8,128}$")

OPEN_QUEUE_DATASET = "open-queue"
MERGED_HISTORY_DATASET = "merged-history"

SECONDS_PER_DAY = 24 * 60 * 60


class RecordType(StrEnum):
    """Queue type resolved from the label set of a pull request."""

    PLUGIN = "plugin"
    THEME = "theme"
    UNKNOWN = "unknown"


KNOWN_RECORD_TYPES: tuple[RecordType, ...] = (RecordType.PLUGIN, RecordType.THEME)


@dataclass(frozen=True)
class PullRequestRecord:
    """One open pull request waiting in the review queue."""

    id: int
    title: str
    url: str
    record_type: RecordType
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "type": self.record_type.value,
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> PullRequestRecord:
        data = _require_mapping(payload, "pull request")
        return cls(
            id=_require_non_negative_int(data, "id"),
            title=_require_str(data, "title"),
            url=_require_str(data, "url"),
            record_type=_require_record_type(data, "type"),
            created_at=_require_timestamp(data, "createdAt"),
        )


@dataclass(frozen=True)
class MergedRecord(PullRequestRecord):
    """One merged pull request kept for throughput statistics."""

    merged_at: datetime
    days_to_merge: int

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["mergedAt"] = format_timestamp(self.merged_at)
        payload["daysToMerge"] = self.days_to_merge
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> MergedRecord:
        data = _require_mapping(payload, "merged pull request")
        return cls(
            id=_require_non_negative_int(data, "id"),
            title=_require_str(data, "title"),
            url=_require_str(data, "url"),
            record_type=_require_record_type(data, "type"),
            created_at=_require_timestamp(data, "createdAt"),
            merged_at=_require_timestamp(data, "mergedAt"),
            days_to_merge=_require_non_negative_int(data, "daysToMerge"),
        )


@dataclass(frozen=True)
class DatasetPointer:
    """Mutable indirection naming the current immutable version of a dataset."""

    dataset: str
    version: str
    url: str
    updated_at: datetime
    size: int
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset": self.dataset,
            "version": self.version,
            "url": self.url,
            "updatedAt": format_timestamp(self.updated_at),
            "size": self.size,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> DatasetPointer:
        data = _require_mapping(payload, "dataset pointer")
        dataset = _require_str(data, "dataset")
        version = _require_str(data, "version")
        content_hash = _require_str(data, "hash")
        if not DATASET_NAME_PATTERN.fullmatch(dataset):
            raise SchemaValidationError(f"Invalid dataset name in pointer: {dataset!r}.")
        if not VERSION_PATTERN.fullmatch(version):
            raise SchemaValidationError(f"Invalid version in pointer: {version!r}.")
        if not HASH_PATTERN.fullmatch(content_hash):
            raise SchemaValidationError(f"Invalid content hash in pointer: {content_hash!r}.")
        return cls(
            dataset=dataset,
            version=version,
            url=_require_str(data, "url"),
            updated_at=_require_timestamp(data, "updatedAt"),
            size=_require_non_negative_int(data, "size"),
            hash=content_hash,
        )


@dataclass(frozen=True)
class WaitEstimate:
    """Point estimate and one-sigma range of days until a queued record merges.

    All three numbers are None when there is no recent throughput, which
    consumers render as an unknown or unbounded wait.
    """

    estimated_days: int | None
    lower: int | None
    upper: int | None
    is_high_variance: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimatedDays": self.estimated_days,
            "range": {"lower": self.lower, "upper": self.upper},
            "isHighVariance": self.is_high_variance,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> WaitEstimate:
        data = _require_mapping(payload, "wait estimate")
        range_data = _require_mapping(data.get("range"), "wait estimate range")
        is_high_variance = data.get("isHighVariance")
        if not isinstance(is_high_variance, bool):
            raise SchemaValidationError("Field 'isHighVariance' must be a boolean.")
        return cls(
            estimated_days=_optional_non_negative_int(data, "estimatedDays"),
            lower=_optional_non_negative_int(range_data, "lower"),
            upper=_optional_non_negative_int(range_data, "upper"),
            is_high_variance=is_high_variance,
        )


@dataclass(frozen=True)
class QueueTotals:
    """Open queue size split by record type."""

    ready_total: int
    ready_plugins: int
    ready_themes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "readyTotal": self.ready_total,
            "readyPlugins": self.ready_plugins,
            "readyThemes": self.ready_themes,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> QueueTotals:
        data = _require_mapping(payload, "totals")
        return cls(
            ready_total=_require_non_negative_int(data, "readyTotal"),
            ready_plugins=_require_non_negative_int(data, "readyPlugins"),
            ready_themes=_require_non_negative_int(data, "readyThemes"),
        )


@dataclass(frozen=True)
class WaitEstimates:
    plugin: WaitEstimate
    theme: WaitEstimate

    def to_dict(self) -> dict[str, Any]:
        return {"plugin": self.plugin.to_dict(), "theme": self.theme.to_dict()}

    @classmethod
    def from_dict(cls, payload: Any) -> WaitEstimates:
        data = _require_mapping(payload, "wait estimates")
        return cls(
            plugin=WaitEstimate.from_dict(data.get("plugin")),
            theme=WaitEstimate.from_dict(data.get("theme")),
        )


@dataclass(frozen=True)
class WeeklyAggregate:
    """Sparse weekly merge counts as parallel arrays sorted by week start."""

    week_starts: list[datetime]
    plugin_counts: list[int]
    theme_counts: list[int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "weekStarts": [format_timestamp(week_start) for week_start in self.week_starts],
            "pluginCounts": list(self.plugin_counts),
            "themeCounts": list(self.theme_counts),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> WeeklyAggregate:
        data = _require_mapping(payload, "weekly aggregate")
        week_starts = [parse_timestamp(value) for value in _require_list(data, "weekStarts")]
        plugin_counts = [_as_non_negative_int(value, "pluginCounts") for value in _require_list(data, "pluginCounts")]
        theme_counts = [_as_non_negative_int(value, "themeCounts") for value in _require_list(data, "themeCounts")]
        if not len(week_starts) == len(plugin_counts) == len(theme_counts):
            raise SchemaValidationError("Weekly aggregate arrays must have equal lengths.")
        return cls(week_starts=week_starts, plugin_counts=plugin_counts, theme_counts=theme_counts)


@dataclass(frozen=True)
class DatasetPointers:
    open_queue: DatasetPointer | None
    merged_history: DatasetPointer | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "openQueue": self.open_queue.to_dict() if self.open_queue is not None else None,
            "mergedHistory": self.merged_history.to_dict() if self.merged_history is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> DatasetPointers:
        data = _require_mapping(payload, "datasets")
        open_queue = data.get("openQueue")
        merged_history = data.get("mergedHistory")
        return cls(
            open_queue=DatasetPointer.from_dict(open_queue) if open_queue is not None else None,
            merged_history=DatasetPointer.from_dict(merged_history) if merged_history is not None else None,
        )


@dataclass(frozen=True)
class Summary:
    """The single small document re-read on every client request."""

    checked_at: datetime
    page1_etag: str | None
    latest_merged_at: datetime | None
    totals: QueueTotals
    wait_estimates: WaitEstimates
    weekly_merged: WeeklyAggregate
    datasets: DatasetPointers

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkedAt": format_timestamp(self.checked_at),
            "page1ETag": self.page1_etag,
            "latestMergedAt": format_timestamp(self.latest_merged_at) if self.latest_merged_at is not None else None,
            "totals": self.totals.to_dict(),
            "waitEstimates": self.wait_estimates.to_dict(),
            "weeklyMerged": self.weekly_merged.to_dict(),
            "datasets": self.datasets.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> Summary:
        data = _require_mapping(payload, "summary")
        page1_etag = data.get("page1ETag")
        if page1_etag is not None and not isinstance(page1_etag, str):
            raise SchemaValidationError("Field 'page1ETag' must be a string or null.")
        latest_merged_at = data.get("latestMergedAt")
        return cls(
            checked_at=_require_timestamp(data, "checkedAt"),
            page1_etag=page1_etag,
            latest_merged_at=parse_timestamp(latest_merged_at) if latest_merged_at is not None else None,
            totals=QueueTotals.from_dict(data.get("totals")),
            wait_estimates=WaitEstimates.from_dict(data.get("waitEstimates")),
            weekly_merged=WeeklyAggregate.from_dict(data.get("weeklyMerged")),
            datasets=DatasetPointers.from_dict(data.get("datasets")),
        )


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (2.5 -> 3, -2.5 -> -2)."""
    return math.floor(value + 0.5)


def compute_days_to_merge(created_at: datetime, merged_at: datetime) -> int:
    """Whole days between creation and merge, never negative."""
    elapsed_days = (merged_at - created_at).total_seconds() / SECONDS_PER_DAY
    return max(0, round_half_up(elapsed_days))


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as an ISO-8601 UTC string with a `Z` suffix."""
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string with an explicit offset into an aware UTC datetime."""
    if not isinstance(value, str):
        raise SchemaValidationError(f"Expected timestamp string, got {type(value).__name__}.")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise SchemaValidationError(f"Invalid timestamp: {value!r}.") from exc
    if parsed.tzinfo is None:
        raise SchemaValidationError(f"Timestamp lacks a UTC offset: {value!r}.")
    return parsed.astimezone(UTC)


def dump_records(records: list[PullRequestRecord] | list[MergedRecord]) -> str:
    """Serialize records deterministically so equal content hashes equally."""
    return orjson.dumps([record.to_dict() for record in records], option=orjson.OPT_SORT_KEYS).decode("utf-8")


def load_open_records(raw: str) -> list[PullRequestRecord]:
    return [PullRequestRecord.from_dict(item) for item in _load_json_list(raw)]


def load_merged_records(raw: str) -> list[MergedRecord]:
    return [MergedRecord.from_dict(item) for item in _load_json_list(raw)]


def dump_summary(summary: Summary) -> str:
    return orjson.dumps(summary.to_dict()).decode("utf-8")


def load_summary(raw: str | bytes) -> Summary:
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise SchemaValidationError(f"Summary is not valid JSON: {exc}") from exc
    return Summary.from_dict(payload)


def _load_json_list(raw: str) -> list[Any]:
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise SchemaValidationError(f"Dataset content is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise SchemaValidationError(f"Dataset content must be a JSON array, got {type(payload).__name__}.")
    return payload


def _require_mapping(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SchemaValidationError(f"Expected {label} object, got {type(value).__name__}.")
    return value


def _require_list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if not isinstance(value, list):
        raise SchemaValidationError(f"Field '{key}' must be an array.")
    return value


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise SchemaValidationError(f"Field '{key}' must be a string.")
    return value


def _require_timestamp(data: dict[str, Any], key: str) -> datetime:
    if key not in data:
        raise SchemaValidationError(f"Field '{key}' is missing.")
    return parse_timestamp(data[key])


def _require_record_type(data: dict[str, Any], key: str) -> RecordType:
    value = _require_str(data, key)
    try:
        return RecordType(value)
    except ValueError as exc:
        raise SchemaValidationError(f"Unknown record type: {value!r}.") from exc


def _require_non_negative_int(data: dict[str, Any], key: str) -> int:
    return _as_non_negative_int(data.get(key), key)


def _optional_non_negative_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    return _as_non_negative_int(value, key)


def _as_non_negative_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SchemaValidationError(f"Field '{key}' must be a non-negative integer.")
    return value
