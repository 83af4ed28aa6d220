from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Annotated, Iterator

from fastapi import APIRouter, HTTPException, Query, status

from facility_analytics.api.deps import Engine
from facility_analytics.core.errors import (
    ConfigurationError,
    DeadlineExceededError,
    QueryRangeError,
)
from facility_analytics.core.timeutil import to_utc
from facility_analytics.models.bucket import Bucket, Granularity
from facility_analytics.schemas.analytics import (
    BucketOut,
    CategoryOut,
    ClassificationOut,
    ComparisonEntryOut,
    ComparisonOut,
    CongestionRateEntryOut,
    CongestionRateOut,
    HourOfDaySlotOut,
    PeakWindowOut,
    ServiceStatusOut,
    StatsOut,
    SummaryOut,
    TimelinePointOut,
    TrendOut,
)
from facility_analytics.schemas.readings import METRIC_PATTERN
from facility_analytics.services.ranking import SORT_FIELDS

logger = logging.getLogger(__name__)

router = APIRouter()

EntityParam = Annotated[str, Query(min_length=1, max_length=128)]
OptionalEntityParam = Annotated[str | None, Query(min_length=1, max_length=128)]
EntityListParam = Annotated[list[str] | None, Query()]
MetricParam = Annotated[str, Query(min_length=1, max_length=64, pattern=METRIC_PATTERN)]
TimeParam = Annotated[datetime | None, Query()]

DEFAULT_WINDOW = timedelta(hours=24)


def _window(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
    end_dt = to_utc(end) if end else datetime.now(tz=timezone.utc)
    start_dt = to_utc(start) if start else end_dt - DEFAULT_WINDOW
    return start_dt, end_dt


@contextmanager
def _engine_errors() -> Iterator[None]:
    try:
        yield
    except QueryRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except DeadlineExceededError as e:
        logger.warning(
            "Query deadline exceeded after %d buckets (covered until %s)",
            len(e.partial),
            e.covered_until,
        )
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Query deadline exceeded"
        ) from e


def _bucket_out(bucket: Bucket) -> BucketOut:
    return BucketOut(
        entity_id=bucket.entity_id,
        metric=bucket.metric,
        granularity=bucket.granularity.value,
        bucket_start=bucket.bucket_start,
        bucket_end=bucket.bucket_end,
        count=bucket.count,
        sum=bucket.sum if math.isfinite(bucket.sum) else None,
        min=bucket.min,
        max=bucket.max,
        avg=bucket.average,
        final=bucket.final,
    )


@router.get("/buckets", response_model=list[BucketOut])
def list_buckets(
    engine: Engine,
    entity_id: EntityParam,
    metric: MetricParam,
    start: TimeParam = None,
    end: TimeParam = None,
    granularity: Granularity = Granularity.HOUR,
    rollup: bool = False,
) -> list[BucketOut]:
    start_dt, end_dt = _window(start, end)
    with _engine_errors():
        if rollup and granularity is Granularity.DAY:
            buckets = engine.daily_rollup(entity_id, metric, start_dt, end_dt)
        else:
            buckets = engine.buckets(entity_id, metric, start_dt, end_dt, granularity)
    return [_bucket_out(b) for b in buckets]


@router.get("/classification", response_model=ClassificationOut)
def classify_latest(
    engine: Engine, entity_id: EntityParam, metric: MetricParam
) -> ClassificationOut:
    with _engine_errors():
        state = engine.classify_latest(entity_id, metric)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No data")
    return ClassificationOut(
        entity_id=state.entity_id,
        metric=state.metric,
        value=state.value,
        timestamp=state.timestamp,
        category=CategoryOut(label=state.category.label, rank=state.category.rank),
    )


@router.get("/timeline", response_model=list[TimelinePointOut])
def classified_timeline(
    engine: Engine,
    entity_id: EntityParam,
    metric: MetricParam,
    start: TimeParam = None,
    end: TimeParam = None,
    granularity: Granularity = Granularity.HOUR,
) -> list[TimelinePointOut]:
    start_dt, end_dt = _window(start, end)
    with _engine_errors():
        points = engine.timeline(entity_id, metric, start_dt, end_dt, granularity)
    return [TimelinePointOut.model_validate(p.__dict__) for p in points]


@router.get("/service-status", response_model=ServiceStatusOut)
def service_status(engine: Engine, entity_id: EntityParam) -> ServiceStatusOut:
    with _engine_errors():
        result = engine.service_status(entity_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No data")
    return ServiceStatusOut.model_validate(result.__dict__)


@router.get("/peak", response_model=PeakWindowOut)
def peak_window(
    engine: Engine,
    metric: MetricParam,
    entity_id: OptionalEntityParam = None,
    start: TimeParam = None,
    end: TimeParam = None,
    granularity: Granularity = Granularity.HOUR,
) -> PeakWindowOut:
    start_dt, end_dt = _window(start, end)
    with _engine_errors():
        peak = engine.peak_window(entity_id, metric, start_dt, end_dt, granularity)
    if peak is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No data")
    return PeakWindowOut(
        metric=peak.metric,
        entity_id=peak.entity_id,
        granularity=peak.granularity.value,
        bucket_start=peak.bucket_start,
        value=peak.value,
        count=peak.count,
    )


@router.get("/peak-hours", response_model=list[HourOfDaySlotOut])
def peak_hours(
    engine: Engine,
    metric: MetricParam,
    entity_id: OptionalEntityParam = None,
    start: TimeParam = None,
    end: TimeParam = None,
    top: Annotated[int, Query(ge=1, le=24)] = 3,
) -> list[HourOfDaySlotOut]:
    start_dt, end_dt = _window(start, end)
    with _engine_errors():
        slots = engine.peak_hours(entity_id, metric, start_dt, end_dt, top=top)
    return [HourOfDaySlotOut.model_validate(s.__dict__) for s in slots]


@router.get("/trend", response_model=TrendOut)
def trend(
    engine: Engine,
    entity_id: EntityParam,
    metric: MetricParam,
    start: TimeParam = None,
    end: TimeParam = None,
    prior_start: TimeParam = None,
    prior_end: TimeParam = None,
) -> TrendOut:
    start_dt, end_dt = _window(start, end)
    # Without an explicit prior window, compare against the window of equal
    # length that ends where the current one starts.
    prior_end_dt = to_utc(prior_end) if prior_end else start_dt
    prior_start_dt = to_utc(prior_start) if prior_start else prior_end_dt - (end_dt - start_dt)
    with _engine_errors():
        result = engine.trend(
            entity_id, metric, (start_dt, end_dt), (prior_start_dt, prior_end_dt)
        )
    return TrendOut(
        entity_id=result.entity_id,
        metric=result.metric,
        status=result.status.value,
        current_average=result.current_average,
        prior_average=result.prior_average,
        percentage_change=result.percentage_change,
        direction=result.direction.value if result.direction is not None else None,
    )


@router.get("/comparison", response_model=ComparisonOut)
def compare_entities(
    engine: Engine,
    metric: MetricParam,
    entity_id: EntityListParam = None,
    start: TimeParam = None,
    end: TimeParam = None,
    sort_by: Annotated[str, Query(pattern="^(" + "|".join(SORT_FIELDS) + ")$")] = "avg",
    descending: bool = True,
) -> ComparisonOut:
    start_dt, end_dt = _window(start, end)
    with _engine_errors():
        report = engine.compare(
            entity_id or None, metric, start_dt, end_dt, sort_by=sort_by, descending=descending
        )
    return ComparisonOut(
        metric=report.metric,
        window_start=report.window_start,
        window_end=report.window_end,
        sort_by=report.sort_by,
        entries=[
            ComparisonEntryOut(
                entity_id=e.entity_id,
                rank=e.rank,
                summary=SummaryOut.model_validate(e.summary.__dict__),
                category=e.category,
            )
            for e in report.entries
        ],
        no_data=list(report.no_data),
        busiest=report.busiest,
        least_busy=report.least_busy,
        overall_average=report.overall_average,
    )


@router.get("/congestion-rates", response_model=CongestionRateOut)
def congestion_rates(
    engine: Engine,
    metric: MetricParam,
    entity_id: EntityListParam = None,
    start: TimeParam = None,
    end: TimeParam = None,
) -> CongestionRateOut:
    start_dt, end_dt = _window(start, end)
    with _engine_errors():
        report = engine.congestion_rates(entity_id or None, metric, start_dt, end_dt)
    return CongestionRateOut(
        metric=report.metric,
        window_start=report.window_start,
        window_end=report.window_end,
        congested_label=report.congested_label,
        entries=[CongestionRateEntryOut.model_validate(e.__dict__) for e in report.entries],
        no_data=list(report.no_data),
        most_congested=report.most_congested,
        least_congested=report.least_congested,
        overall_congestion_rate=report.overall_congestion_rate,
    )


@router.get("/stats", response_model=StatsOut)
def stats(engine: Engine) -> StatsOut:
    return StatsOut.model_validate(engine.stats().__dict__)
