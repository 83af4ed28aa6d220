from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from facility_analytics.core.errors import DeadlineExceededError, QueryRangeError
from facility_analytics.core.timeutil import Clock, to_utc, utc_now
from facility_analytics.models.analytics import MetricSummary
from facility_analytics.models.bucket import Bucket, Granularity
from facility_analytics.models.reading import Reading
from facility_analytics.services.keyed import KeyedSlots

logger = logging.getLogger(__name__)


@dataclass
class _Series:
    buckets: dict[Granularity, dict[datetime, Bucket]] = field(
        default_factory=lambda: {g: {} for g in Granularity}
    )
    # Earliest bucket_start per granularity, so eviction can skip the scan.
    low_water: dict[Granularity, datetime | None] = field(
        default_factory=lambda: {g: None for g in Granularity}
    )


def validate_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = to_utc(start), to_utc(end)
    if start >= end:
        raise QueryRangeError(start, end)
    return start, end


def rollup(buckets: Iterable[Bucket], granularity: Granularity) -> list[Bucket]:
    """Re-aggregate buckets into coarser ones.

    Sum of sums, sum of counts, min of mins, max of maxes. Buckets are grouped
    per (entity_id, metric, coarse start) and returned ordered by start.
    """
    grouped: dict[tuple[str, str, datetime], Bucket] = {}
    for bucket in buckets:
        start = granularity.floor(bucket.bucket_start)
        key = (bucket.entity_id, bucket.metric, start)
        target = grouped.get(key)
        if target is None:
            target = Bucket(
                entity_id=bucket.entity_id,
                metric=bucket.metric,
                granularity=granularity,
                bucket_start=start,
            )
            grouped[key] = target
        target.merge(bucket)
    return sorted(grouped.values(), key=lambda b: (b.bucket_start, b.entity_id))


def combine(buckets: Iterable[Bucket]) -> MetricSummary | None:
    """Collapse any set of buckets into one window summary, None if empty."""
    total: Bucket | None = None
    for bucket in buckets:
        if total is None:
            total = Bucket(
                entity_id=bucket.entity_id,
                metric=bucket.metric,
                granularity=bucket.granularity,
                bucket_start=bucket.bucket_start,
            )
        total.merge(bucket)
    if total is None or total.count == 0:
        return None
    avg = total.average
    if avg is None or total.min is None or total.max is None:
        return None
    return MetricSummary(count=total.count, sum=total.sum, min=total.min, max=total.max, avg=avg)


class BucketAggregator:
    """Hourly and daily running statistics per (entity_id, metric).

    Every accepted reading is folded into its historical buckets whatever
    order it arrives in. Buckets past their retention horizon are evicted
    lazily when the key is next touched, or by ``sweep``. Queries hand out
    copies, so eviction never changes a result a caller is holding.
    """

    def __init__(
        self,
        *,
        hour_retention: timedelta,
        day_retention: timedelta,
        grace: timedelta,
        seal_final_buckets: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        self._retention = {Granularity.HOUR: hour_retention, Granularity.DAY: day_retention}
        self._grace = grace
        self._seal = seal_final_buckets
        self._clock = clock
        self._slots: KeyedSlots[_Series] = KeyedSlots(_Series)
        self._stats_lock = threading.Lock()
        self._evicted = 0
        self._sealed_drops = 0

    def _cutoff(self, granularity: Granularity, now: datetime) -> datetime:
        return now - self._retention[granularity]

    def _evict(self, series: _Series, granularity: Granularity, now: datetime) -> int:
        low = series.low_water[granularity]
        cutoff = self._cutoff(granularity, now)
        width = granularity.width
        if low is None or low + width > cutoff:
            return 0
        buckets = series.buckets[granularity]
        expired = [start for start in buckets if start + width <= cutoff]
        for start in expired:
            del buckets[start]
        series.low_water[granularity] = min(buckets) if buckets else None
        return len(expired)

    def _record_evictions(self, count: int) -> None:
        if count:
            with self._stats_lock:
                self._evicted += count
            logger.debug("Evicted %d aged-out buckets", count)

    def update(self, reading: Reading) -> bool:
        now = self._clock()
        slot = self._slots.get_or_create(reading.key)
        folded = False
        evicted = 0
        with slot.lock:
            series = slot.state
            for granularity in Granularity:
                evicted += self._evict(series, granularity, now)

            hour_start = Granularity.HOUR.floor(reading.timestamp)
            if self._seal and hour_start + Granularity.HOUR.width + self._grace <= now:
                with self._stats_lock:
                    self._sealed_drops += 1
                logger.debug(
                    "Dropped late reading for final bucket entity=%s metric=%s start=%s",
                    reading.entity_id,
                    reading.metric,
                    hour_start.isoformat(),
                )
            else:
                for granularity in Granularity:
                    start = granularity.floor(reading.timestamp)
                    if start + granularity.width <= self._cutoff(granularity, now):
                        continue
                    buckets = series.buckets[granularity]
                    bucket = buckets.get(start)
                    if bucket is None:
                        bucket = Bucket(
                            entity_id=reading.entity_id,
                            metric=reading.metric,
                            granularity=granularity,
                            bucket_start=start,
                        )
                        buckets[start] = bucket
                        low = series.low_water[granularity]
                        if low is None or start < low:
                            series.low_water[granularity] = start
                    bucket.add(reading.value)
                    folded = True
        self._record_evictions(evicted)
        return folded

    def query(
        self,
        entity_id: str,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        deadline: float | None = None,
    ) -> list[Bucket]:
        """Buckets overlapping ``[start, end)`` in ascending ``bucket_start``.

        ``deadline`` is a ``time.monotonic()`` instant; past it the scan stops
        with ``DeadlineExceededError`` carrying what was gathered so far.
        """
        start, end = validate_window(start, end)
        slot = self._slots.get((entity_id, metric))
        if slot is None:
            return []

        now = self._clock()
        width = granularity.width
        result: list[Bucket] = []
        with slot.lock:
            evicted = self._evict(slot.state, granularity, now)
            buckets = slot.state.buckets[granularity]
            starts = sorted(s for s in buckets if s < end and s + width > start)
            for bucket_start in starts:
                if deadline is not None and time.monotonic() > deadline:
                    raise DeadlineExceededError(partial=result, covered_until=bucket_start)
                bucket = buckets[bucket_start]
                result.append(bucket.copy(final=bucket.is_final(now=now, grace=self._grace)))
        self._record_evictions(evicted)
        return result

    def sweep(self) -> int:
        now = self._clock()
        evicted = 0
        for _, slot in self._slots.items():
            with slot.lock:
                for granularity in Granularity:
                    evicted += self._evict(slot.state, granularity, now)
        self._record_evictions(evicted)
        return evicted

    def entities(self, metric: str) -> list[str]:
        return sorted({entity for entity, m in self._slots.keys() if m == metric})

    def counts(self) -> dict[Granularity, int]:
        totals = {g: 0 for g in Granularity}
        for _, slot in self._slots.items():
            with slot.lock:
                for granularity, buckets in slot.state.buckets.items():
                    totals[granularity] += len(buckets)
        return totals

    @property
    def evicted_total(self) -> int:
        with self._stats_lock:
            return self._evicted

    @property
    def sealed_drops(self) -> int:
        with self._stats_lock:
            return self._sealed_drops
