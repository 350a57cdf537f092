"""Summary builder: queue totals, wait-time estimates, and weekly merge throughput."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta
from statistics import fmean, pstdev
from typing import Sequence

from ..schemas import (
    KNOWN_RECORD_TYPES,
    DatasetPointers,
    MergedRecord,
    PullRequestRecord,
    QueueTotals,
    RecordType,
    Summary,
    WaitEstimate,
    WaitEstimates,
    WeeklyAggregate,
    round_half_up,
)

VELOCITY_WEEKS = 12
WEEKLY_WINDOW_WEEKS = 12
ESTIMATE_SAMPLE_SIZE = 50
HIGH_VARIANCE_THRESHOLD = 0.5


class SummaryBuilder:
    """Turns raw record sets into the published summary.

    Estimates assume the queue is reviewed roughly in creation order at a
    steady rate. Nothing here measures that assumption; the high-variance
    flag is the only signal that it may not hold.
    """

    def __init__(
        self,
        velocity_weeks: int = VELOCITY_WEEKS,
        weekly_window_weeks: int = WEEKLY_WINDOW_WEEKS,
        sample_size: int = ESTIMATE_SAMPLE_SIZE,
    ) -> None:
        self._velocity_weeks = velocity_weeks
        self._weekly_window_weeks = weekly_window_weeks
        self._sample_size = sample_size

    def build(
        self,
        open_records: Sequence[PullRequestRecord],
        merged_records: Sequence[MergedRecord],
        *,
        checked_at: datetime,
        page1_etag: str | None,
        latest_merged_at: datetime | None,
        datasets: DatasetPointers,
    ) -> Summary:
        return Summary(
            checked_at=checked_at,
            page1_etag=page1_etag,
            latest_merged_at=latest_merged_at,
            totals=compute_totals(open_records),
            wait_estimates=WaitEstimates(
                plugin=compute_wait_estimate(
                    merged_records,
                    RecordType.PLUGIN,
                    now=checked_at,
                    velocity_weeks=self._velocity_weeks,
                    sample_size=self._sample_size,
                ),
                theme=compute_wait_estimate(
                    merged_records,
                    RecordType.THEME,
                    now=checked_at,
                    velocity_weeks=self._velocity_weeks,
                    sample_size=self._sample_size,
                ),
            ),
            weekly_merged=build_weekly_aggregate(merged_records, now=checked_at, weeks=self._weekly_window_weeks),
            datasets=datasets,
        )


def known_type_records(records: Sequence[PullRequestRecord]) -> list[PullRequestRecord]:
    """Drop `UNKNOWN`-typed records; statistics only count recognised types."""
    return [record for record in records if record.record_type in KNOWN_RECORD_TYPES]


def compute_totals(open_records: Sequence[PullRequestRecord]) -> QueueTotals:
    counted = known_type_records(open_records)
    return QueueTotals(
        ready_total=len(counted),
        ready_plugins=sum(1 for record in counted if record.record_type is RecordType.PLUGIN),
        ready_themes=sum(1 for record in counted if record.record_type is RecordType.THEME),
    )


def compute_wait_estimate(
    history: Sequence[MergedRecord],
    record_type: RecordType,
    now: datetime | None = None,
    velocity_weeks: int = VELOCITY_WEEKS,
    sample_size: int = ESTIMATE_SAMPLE_SIZE,
) -> WaitEstimate:
    """Estimate days-to-merge for `record_type` from the trailing velocity window.

    The estimate is the mean `daysToMerge` of the most recent `sample_size`
    merges in the window, with a mean +/- one population standard deviation
    range. Without any merges in the window every number is None.
    """
    reference = now or datetime.now(UTC)
    cutoff = reference - timedelta(weeks=velocity_weeks)
    recent = sorted(
        (record for record in history if record.record_type is record_type and record.merged_at > cutoff),
        key=lambda record: record.merged_at,
    )

    throughput_per_week = len(recent) / velocity_weeks
    sample = [record.days_to_merge for record in recent[-sample_size:]]
    if not sample:
        return WaitEstimate(estimated_days=None, lower=None, upper=None, is_high_variance=False)

    mean = fmean(sample)
    std_dev = pstdev(sample, mu=mean)

    estimated_days: int | None = None
    lower: int | None = None
    upper: int | None = None
    if throughput_per_week > 0:
        estimated_days = round_half_up(mean)
        lower = max(0, round_half_up(mean - std_dev))
        upper = round_half_up(mean + std_dev)

    is_high_variance = mean > 0 and std_dev / mean > HIGH_VARIANCE_THRESHOLD
    return WaitEstimate(estimated_days=estimated_days, lower=lower, upper=upper, is_high_variance=is_high_variance)


def week_start(moment: datetime) -> datetime:
    """Return the Sunday 00:00 UTC that opens the week containing `moment`."""
    normalized = moment.astimezone(UTC)
    days_since_sunday = (normalized.weekday() + 1) % 7
    return (normalized - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)


def build_weekly_aggregate(
    merged_records: Sequence[MergedRecord],
    now: datetime | None = None,
    weeks: int = WEEKLY_WINDOW_WEEKS,
) -> WeeklyAggregate:
    """Bucket merges by week; weeks without any merge are omitted, not zero-filled."""
    reference = now or datetime.now(UTC)
    cutoff = reference - timedelta(weeks=weeks)
    buckets: dict[datetime, dict[RecordType, int]] = defaultdict(lambda: defaultdict(int))

    for record in merged_records:
        if record.record_type not in KNOWN_RECORD_TYPES or record.merged_at < cutoff:
            continue
        buckets[week_start(record.merged_at)][record.record_type] += 1

    week_starts = sorted(buckets)
    return WeeklyAggregate(
        week_starts=week_starts,
        plugin_counts=[buckets[week][RecordType.PLUGIN] for week in week_starts],
        theme_counts=[buckets[week][RecordType.THEME] for week in week_starts],
    )
