from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Callable, Iterable

from facility_analytics.models.analytics import (
    HourOfDaySlot,
    PeakWindow,
    TimelinePoint,
    TrendDirection,
    TrendResult,
    TrendStatus,
)
from facility_analytics.models.bucket import Bucket, Granularity
from facility_analytics.services.buckets import BucketAggregator, combine, validate_window
from facility_analytics.services.classifier import Classifier

Window = tuple[datetime, datetime]


def _merge_by(buckets: Iterable[Bucket], key: Callable[[Bucket], Any]) -> dict[Any, Bucket]:
    merged: dict[Any, Bucket] = {}
    for bucket in buckets:
        k = key(bucket)
        target = merged.get(k)
        if target is None:
            target = Bucket(
                entity_id=bucket.entity_id,
                metric=bucket.metric,
                granularity=bucket.granularity,
                bucket_start=bucket.bucket_start,
            )
            merged[k] = target
        target.merge(bucket)
    return merged


class PeakTrendAnalyzer:
    def __init__(
        self,
        *,
        buckets: BucketAggregator,
        classifier: Classifier,
        flatness_epsilon: float,
    ) -> None:
        self._buckets = buckets
        self._classifier = classifier
        self._epsilon = flatness_epsilon

    def _collect(
        self,
        entity_id: str | None,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity,
        deadline: float | None,
    ) -> list[Bucket]:
        entities = [entity_id] if entity_id is not None else self._buckets.entities(metric)
        rows: list[Bucket] = []
        for entity in entities:
            rows.extend(
                self._buckets.query(entity, metric, start, end, granularity, deadline=deadline)
            )
        return rows

    def peak_window(
        self,
        entity_id: str | None,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        deadline: float | None = None,
    ) -> PeakWindow | None:
        """Bucket with the highest average; ties go to the earliest start.

        With ``entity_id=None`` every entity reporting the metric is merged
        per bucket start before picking the peak.
        """
        start, end = validate_window(start, end)
        rows = self._collect(entity_id, metric, start, end, granularity, deadline)
        merged = _merge_by(rows, lambda b: b.bucket_start)

        best: Bucket | None = None
        best_avg: float | None = None
        for bucket_start in sorted(merged):
            bucket = merged[bucket_start]
            avg = bucket.average
            if avg is None:
                continue
            if best_avg is None or avg > best_avg:
                best, best_avg = bucket, avg
        if best is None or best_avg is None:
            return None
        return PeakWindow(
            metric=metric,
            entity_id=entity_id,
            granularity=granularity,
            bucket_start=best.bucket_start,
            value=best_avg,
            count=best.count,
        )

    def peak_hours(
        self,
        entity_id: str | None,
        metric: str,
        start: datetime,
        end: datetime,
        *,
        top: int = 3,
        deadline: float | None = None,
    ) -> list[HourOfDaySlot]:
        start, end = validate_window(start, end)
        rows = self._collect(entity_id, metric, start, end, Granularity.HOUR, deadline)
        merged = _merge_by(rows, lambda b: b.bucket_start.hour)
        slots: list[HourOfDaySlot] = []
        for hour, bucket in merged.items():
            avg = bucket.average
            if avg is not None:
                slots.append(HourOfDaySlot(hour=hour, average=avg, count=bucket.count))
        slots.sort(key=lambda s: (-s.average, s.hour))
        return slots[: max(top, 0)]

    def trend(
        self,
        entity_id: str,
        metric: str,
        current: Window,
        prior: Window,
        *,
        deadline: float | None = None,
    ) -> TrendResult:
        current_start, current_end = validate_window(*current)
        prior_start, prior_end = validate_window(*prior)
        now_summary = combine(
            self._buckets.query(entity_id, metric, current_start, current_end, deadline=deadline)
        )
        prior_summary = combine(
            self._buckets.query(entity_id, metric, prior_start, prior_end, deadline=deadline)
        )
        current_avg = now_summary.avg if now_summary is not None else None
        prior_avg = prior_summary.avg if prior_summary is not None else None

        if current_avg is None or prior_avg is None or prior_avg == 0:
            return TrendResult(
                entity_id=entity_id,
                metric=metric,
                status=TrendStatus.INSUFFICIENT_HISTORY,
                current_average=current_avg,
                prior_average=prior_avg,
            )

        change = (current_avg - prior_avg) / prior_avg * 100.0
        if not math.isfinite(change):
            # A prior average near zero leaves the ratio undefined.
            return TrendResult(
                entity_id=entity_id,
                metric=metric,
                status=TrendStatus.INSUFFICIENT_HISTORY,
                current_average=current_avg,
                prior_average=prior_avg,
            )
        if abs(change) < self._epsilon:
            direction = TrendDirection.FLAT
        elif change > 0:
            direction = TrendDirection.UP
        else:
            direction = TrendDirection.DOWN
        return TrendResult(
            entity_id=entity_id,
            metric=metric,
            status=TrendStatus.OK,
            current_average=current_avg,
            prior_average=prior_avg,
            percentage_change=change,
            direction=direction,
        )

    def timeline(
        self,
        entity_id: str,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        deadline: float | None = None,
    ) -> list[TimelinePoint]:
        points: list[TimelinePoint] = []
        for bucket in self._buckets.query(
            entity_id, metric, start, end, granularity, deadline=deadline
        ):
            avg = bucket.average
            if avg is None or bucket.min is None or bucket.max is None:
                continue
            points.append(
                TimelinePoint(
                    bucket_start=bucket.bucket_start,
                    count=bucket.count,
                    min=bucket.min,
                    max=bucket.max,
                    avg=avg,
                    final=bucket.final,
                    category=self._classifier.label_for(metric, avg),
                )
            )
        return points
