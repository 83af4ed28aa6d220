from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class BucketOut(BaseModel):
    entity_id: str
    metric: str
    granularity: str
    bucket_start: datetime
    bucket_end: datetime
    count: int = Field(ge=0)
    sum: float | None = None
    min: float | None = None
    max: float | None = None
    avg: float | None = None
    final: bool = False


class CategoryOut(BaseModel):
    label: str
    rank: int = Field(ge=0)


class ClassificationOut(BaseModel):
    entity_id: str
    metric: str
    value: float
    timestamp: datetime
    category: CategoryOut


class TimelinePointOut(BaseModel):
    bucket_start: datetime
    count: int = Field(ge=0)
    min: float
    max: float
    avg: float
    final: bool
    category: str | None = None


class ServiceStatusOut(BaseModel):
    entity_id: str
    status: str
    queue_value: float
    wait_value: float
    timestamp: datetime


class PeakWindowOut(BaseModel):
    metric: str
    entity_id: str | None = None
    granularity: str
    bucket_start: datetime
    value: float
    count: int = Field(ge=0)


class HourOfDaySlotOut(BaseModel):
    hour: int = Field(ge=0, le=23)
    average: float
    count: int = Field(ge=0)


class TrendOut(BaseModel):
    entity_id: str
    metric: str
    status: str
    current_average: float | None = None
    prior_average: float | None = None
    percentage_change: float | None = None
    direction: str | None = None


class SummaryOut(BaseModel):
    count: int = Field(ge=0)
    sum: float
    min: float
    max: float
    avg: float


class ComparisonEntryOut(BaseModel):
    entity_id: str
    rank: int = Field(ge=1)
    summary: SummaryOut
    category: str | None = None


class ComparisonOut(BaseModel):
    metric: str
    window_start: datetime
    window_end: datetime
    sort_by: str
    entries: list[ComparisonEntryOut]
    no_data: list[str]
    busiest: str | None = None
    least_busy: str | None = None
    overall_average: float | None = None


class CongestionRateEntryOut(BaseModel):
    entity_id: str
    rank: int = Field(ge=1)
    bucket_count: int = Field(ge=0)
    shares: dict[str, float]
    congestion_rate: float


class CongestionRateOut(BaseModel):
    metric: str
    window_start: datetime
    window_end: datetime
    congested_label: str
    entries: list[CongestionRateEntryOut]
    no_data: list[str]
    most_congested: str | None = None
    least_congested: str | None = None
    overall_congestion_rate: float | None = None


class StatsOut(BaseModel):
    accepted: int = Field(ge=0)
    rejected: int = Field(ge=0)
    rejections_by_reason: dict[str, int]
    tracked_keys: int = Field(ge=0)
    hour_buckets: int = Field(ge=0)
    day_buckets: int = Field(ge=0)
    evicted_buckets: int = Field(ge=0)
    sealed_drops: int = Field(ge=0)
