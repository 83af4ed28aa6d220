from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from facility_analytics.models.bucket import Granularity


@dataclass(frozen=True)
class Category:
    metric: str
    label: str
    rank: int


@dataclass(frozen=True)
class ClassifiedState:
    entity_id: str
    metric: str
    value: float
    timestamp: datetime
    category: Category


@dataclass(frozen=True)
class ServiceStatus:
    entity_id: str
    status: str
    queue_value: float
    wait_value: float
    timestamp: datetime


@dataclass(frozen=True)
class MetricSummary:
    count: int
    sum: float
    min: float
    max: float
    avg: float


@dataclass(frozen=True)
class PeakWindow:
    metric: str
    entity_id: str | None
    granularity: Granularity
    bucket_start: datetime
    value: float
    count: int


@dataclass(frozen=True)
class HourOfDaySlot:
    hour: int
    average: float
    count: int


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"


class TrendStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_HISTORY = "insufficient_history"


@dataclass(frozen=True)
class TrendResult:
    entity_id: str
    metric: str
    status: TrendStatus
    current_average: float | None = None
    prior_average: float | None = None
    percentage_change: float | None = None
    direction: TrendDirection | None = None


@dataclass(frozen=True)
class TimelinePoint:
    bucket_start: datetime
    count: int
    min: float
    max: float
    avg: float
    final: bool
    category: str | None = None


@dataclass(frozen=True)
class ComparisonEntry:
    entity_id: str
    summary: MetricSummary
    rank: int
    category: str | None = None


@dataclass(frozen=True)
class ComparisonReport:
    metric: str
    window_start: datetime
    window_end: datetime
    sort_by: str
    entries: tuple[ComparisonEntry, ...]
    no_data: tuple[str, ...]
    busiest: str | None
    least_busy: str | None
    overall_average: float | None


@dataclass(frozen=True)
class CongestionRateEntry:
    entity_id: str
    bucket_count: int
    shares: dict[str, float]
    congestion_rate: float
    rank: int


@dataclass(frozen=True)
class CongestionRateReport:
    metric: str
    window_start: datetime
    window_end: datetime
    congested_label: str
    entries: tuple[CongestionRateEntry, ...]
    no_data: tuple[str, ...]
    most_congested: str | None
    least_congested: str | None
    overall_congestion_rate: float | None


@dataclass(frozen=True)
class EngineStats:
    accepted: int
    rejected: int
    rejections_by_reason: dict[str, int] = field(default_factory=dict)
    tracked_keys: int = 0
    hour_buckets: int = 0
    day_buckets: int = 0
    evicted_buckets: int = 0
    sealed_drops: int = 0
