from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"

    @property
    def width(self) -> timedelta:
        if self is Granularity.HOUR:
            return timedelta(hours=1)
        return timedelta(days=1)

    def floor(self, ts: datetime) -> datetime:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        ts = ts.astimezone(timezone.utc)
        if self is Granularity.HOUR:
            return ts.replace(minute=0, second=0, microsecond=0)
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)


def _grow_partials(partials: list[float], x: float) -> None:
    # Shewchuk: keeps an exact, non-overlapping expansion of the running sum.
    # A total outside the float range collapses to a single non-finite partial.
    if partials and not math.isfinite(partials[-1]):
        partials[:] = [partials[-1] + x]
        return
    if not math.isfinite(x):
        partials[:] = [x]
        return
    i = 0
    for y in partials:
        if abs(x) < abs(y):
            x, y = y, x
        hi = x + y
        if not math.isfinite(hi):
            partials[:] = [hi]
            return
        lo = y - (hi - x)
        if lo:
            partials[i] = lo
            i += 1
        x = hi
    partials[i:] = [x]


@dataclass
class Bucket:
    """Running statistics for one (entity, metric) pair over one interval.

    The sum is held as exact float partials, so ``sum`` is the correctly
    rounded total of every contributing value whatever order they arrived in,
    and a rollup of finer buckets reproduces it bit for bit.
    """

    entity_id: str
    metric: str
    granularity: Granularity
    bucket_start: datetime
    count: int = 0
    min: float | None = None
    max: float | None = None
    final: bool = False
    _partials: list[float] = field(default_factory=list, repr=False, compare=False)

    @property
    def bucket_end(self) -> datetime:
        return self.bucket_start + self.granularity.width

    @property
    def sum(self) -> float:
        return math.fsum(self._partials)

    @property
    def average(self) -> float | None:
        if self.count == 0 or self.min is None or self.max is None:
            return None
        total = self.sum
        if not math.isfinite(total):
            return None
        avg = total / self.count
        # Rounding of the quotient can land one ulp outside the extremes.
        return min(max(avg, self.min), self.max)

    def add(self, value: float) -> None:
        _grow_partials(self._partials, value)
        self.count += 1
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    def merge(self, other: Bucket) -> None:
        if other.count == 0 or other.min is None or other.max is None:
            return
        for partial in other._partials:
            _grow_partials(self._partials, partial)
        self.count += other.count
        self.min = other.min if self.min is None else min(self.min, other.min)
        self.max = other.max if self.max is None else max(self.max, other.max)

    def is_final(self, *, now: datetime, grace: timedelta) -> bool:
        return self.bucket_end + grace <= now

    def copy(self, *, final: bool | None = None) -> Bucket:
        return Bucket(
            entity_id=self.entity_id,
            metric=self.metric,
            granularity=self.granularity,
            bucket_start=self.bucket_start,
            count=self.count,
            min=self.min,
            max=self.max,
            final=self.final if final is None else final,
            _partials=list(self._partials),
        )
