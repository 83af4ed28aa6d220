from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, TypeVar

from facility_analytics.models.analytics import (
    ComparisonEntry,
    ComparisonReport,
    CongestionRateEntry,
    CongestionRateReport,
    MetricSummary,
)
from facility_analytics.models.bucket import Bucket, Granularity
from facility_analytics.services.buckets import BucketAggregator, combine, validate_window
from facility_analytics.services.classifier import Classifier

SORT_FIELDS = ("avg", "max", "min", "count")

T = TypeVar("T")


def _unique(entity_ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for entity_id in entity_ids:
        if entity_id not in seen:
            seen.add(entity_id)
            ordered.append(entity_id)
    return ordered


def dense_ranks(
    items: list[T], value: Callable[[T], float], *, descending: bool = True
) -> list[tuple[int, T]]:
    """Sort and assign dense ranks (1, 1, 2, ...). Ties keep the given order."""
    ordered = sorted(items, key=value, reverse=descending)
    ranked: list[tuple[int, T]] = []
    rank = 0
    previous: float | None = None
    for item in ordered:
        current = value(item)
        if previous is None or current != previous:
            rank += 1
            previous = current
        ranked.append((rank, item))
    return ranked


class ComparisonRanker:
    """Cross-entity rankings over a time window.

    Each entity's buckets are read under that entity's own lock, one at a
    time, so a wide comparison never holds up ingestion for other keys.
    """

    def __init__(self, *, buckets: BucketAggregator, classifier: Classifier) -> None:
        self._buckets = buckets
        self._classifier = classifier

    def compare(
        self,
        entity_ids: Iterable[str],
        metric: str,
        start: datetime,
        end: datetime,
        *,
        sort_by: str = "avg",
        descending: bool = True,
        deadline: float | None = None,
    ) -> ComparisonReport:
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"sort_by must be one of {SORT_FIELDS}, got '{sort_by}'")
        start, end = validate_window(start, end)

        summaries: list[tuple[str, MetricSummary]] = []
        no_data: list[str] = []
        window_buckets: list[Bucket] = []
        for entity_id in sorted(_unique(entity_ids)):
            rows = self._buckets.query(entity_id, metric, start, end, deadline=deadline)
            summary = combine(rows)
            if summary is None:
                no_data.append(entity_id)
                continue
            window_buckets.extend(rows)
            summaries.append((entity_id, summary))

        ranked = dense_ranks(
            summaries, lambda item: float(getattr(item[1], sort_by)), descending=descending
        )
        entries = tuple(
            ComparisonEntry(
                entity_id=entity_id,
                summary=summary,
                rank=rank,
                category=self._classifier.label_for(metric, summary.avg),
            )
            for rank, (entity_id, summary) in ranked
        )
        overall = combine(window_buckets)
        return ComparisonReport(
            metric=metric,
            window_start=start,
            window_end=end,
            sort_by=sort_by,
            entries=entries,
            no_data=tuple(no_data),
            busiest=entries[0].entity_id if entries else None,
            least_busy=entries[-1].entity_id if entries else None,
            overall_average=overall.avg if overall is not None else None,
        )

    def congestion_rates(
        self,
        entity_ids: Iterable[str],
        metric: str,
        start: datetime,
        end: datetime,
        *,
        deadline: float | None = None,
    ) -> CongestionRateReport:
        """Share of hourly buckets spent in each category, per entity.

        The congestion rate is the share in the most severe category; entities
        are ranked by it, highest first.
        """
        table = self._classifier.require(metric)
        start, end = validate_window(start, end)
        congested = table.labels[-1]

        rated: list[tuple[str, int, dict[str, float], float]] = []
        no_data: list[str] = []
        total_buckets = 0
        total_congested = 0
        for entity_id in sorted(_unique(entity_ids)):
            counts = {label: 0 for label in table.labels}
            for bucket in self._buckets.query(
                entity_id, metric, start, end, Granularity.HOUR, deadline=deadline
            ):
                category = self._classifier.classify_bucket(bucket)
                if category is not None:
                    counts[category.label] += 1
            bucket_count = sum(counts.values())
            if bucket_count == 0:
                no_data.append(entity_id)
                continue
            shares = {label: n * 100.0 / bucket_count for label, n in counts.items()}
            rated.append((entity_id, bucket_count, shares, shares[congested]))
            total_buckets += bucket_count
            total_congested += counts[congested]

        entries = tuple(
            CongestionRateEntry(
                entity_id=entity_id,
                bucket_count=bucket_count,
                shares=shares,
                congestion_rate=rate,
                rank=rank,
            )
            for rank, (entity_id, bucket_count, shares, rate) in dense_ranks(
                rated, lambda item: item[3]
            )
        )
        return CongestionRateReport(
            metric=metric,
            window_start=start,
            window_end=end,
            congested_label=congested,
            entries=entries,
            no_data=tuple(no_data),
            most_congested=entries[0].entity_id if entries else None,
            least_congested=entries[-1].entity_id if entries else None,
            overall_congestion_rate=(
                total_congested * 100.0 / total_buckets if total_buckets else None
            ),
        )
