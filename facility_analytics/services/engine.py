from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Iterable, Mapping

from facility_analytics.core.config import EngineConfig, Settings
from facility_analytics.core.timeutil import Clock, utc_now
from facility_analytics.models.analytics import (
    ClassifiedState,
    ComparisonReport,
    CongestionRateReport,
    EngineStats,
    HourOfDaySlot,
    PeakWindow,
    ServiceStatus,
    TimelinePoint,
    TrendResult,
)
from facility_analytics.models.bucket import Bucket, Granularity
from facility_analytics.models.reading import (
    AcceptResult,
    IngestSummary,
    LatestSnapshot,
    RawReading,
    Reading,
    RejectedReading,
)
from facility_analytics.services.buckets import BucketAggregator, rollup, validate_window
from facility_analytics.services.classifier import Classifier
from facility_analytics.services.latest import LatestValueIndex
from facility_analytics.services.normalizer import ReadingNormalizer
from facility_analytics.services.ranking import ComparisonRanker
from facility_analytics.services.trends import PeakTrendAnalyzer, Window

logger = logging.getLogger(__name__)

RawInput = RawReading | Reading | Mapping[str, Any]


class AnalyticsEngine:
    """In-memory rollup engine: ingestion fan-out plus read-only queries.

    Ingestion normalizes a reading and hands it to both the latest-value
    index and the bucket aggregator. Queries read from those two through the
    classifier, analyzer and ranker. Nothing here performs I/O.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        clock: Clock = utc_now,
        required_metrics: Iterable[str] = (),
    ) -> None:
        self._config = config
        self.normalizer = ReadingNormalizer(future_skew=config.future_skew, clock=clock)
        self.latest_index = LatestValueIndex()
        self.bucket_aggregator = BucketAggregator(
            hour_retention=config.hour_retention,
            day_retention=config.day_retention,
            grace=config.bucket_grace,
            seal_final_buckets=config.seal_final_buckets,
            clock=clock,
        )
        self.classifier = Classifier(config.thresholds, config.service_status)
        for metric in required_metrics:
            self.classifier.require(metric)
        self.analyzer = PeakTrendAnalyzer(
            buckets=self.bucket_aggregator,
            classifier=self.classifier,
            flatness_epsilon=config.flatness_epsilon,
        )
        self.ranker = ComparisonRanker(buckets=self.bucket_aggregator, classifier=self.classifier)
        self._lock = threading.Lock()
        self._accepted = 0

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock = utc_now) -> AnalyticsEngine:
        return cls(EngineConfig.from_settings(settings), clock=clock)

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _deadline(self, timeout: float | None) -> float | None:
        seconds = timeout if timeout is not None else self._config.query_timeout_seconds
        if seconds is None:
            return None
        return time.monotonic() + seconds

    # ingestion

    def ingest(self, raw: RawInput) -> AcceptResult:
        normalized = self.normalizer.normalize(raw)
        if isinstance(normalized, RejectedReading):
            return AcceptResult(
                accepted=False, reason=normalized.reason, detail=normalized.detail
            )
        self.latest_index.update(normalized)
        self.bucket_aggregator.update(normalized)
        with self._lock:
            self._accepted += 1
        return AcceptResult(accepted=True, reading=normalized)

    def ingest_many(self, raws: Iterable[RawInput]) -> IngestSummary:
        received = accepted = 0
        reasons: dict[str, int] = {}
        for raw in raws:
            received += 1
            result = self.ingest(raw)
            if result.accepted:
                accepted += 1
            elif result.reason is not None:
                reasons[result.reason.value] = reasons.get(result.reason.value, 0) + 1
        if received != accepted:
            logger.info("Batch ingest: %d/%d accepted, rejections=%s", accepted, received, reasons)
        return IngestSummary(
            received=received, accepted=accepted, rejected=received - accepted, reasons=reasons
        )

    # queries

    def latest(self, entity_id: str, metric: str) -> LatestSnapshot | None:
        return self.latest_index.get(entity_id, metric)

    def latest_all(self, *, metric: str | None = None) -> list[LatestSnapshot]:
        return self.latest_index.snapshot(metric=metric)

    def buckets(
        self,
        entity_id: str,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        timeout: float | None = None,
    ) -> list[Bucket]:
        return self.bucket_aggregator.query(
            entity_id, metric, start, end, granularity, deadline=self._deadline(timeout)
        )

    def daily_rollup(
        self,
        entity_id: str,
        metric: str,
        start: datetime,
        end: datetime,
        *,
        timeout: float | None = None,
    ) -> list[Bucket]:
        """Day buckets rebuilt from hour buckets; must match direct day buckets."""
        hours = self.bucket_aggregator.query(
            entity_id, metric, start, end, Granularity.HOUR, deadline=self._deadline(timeout)
        )
        return rollup(hours, Granularity.DAY)

    def classify_latest(self, entity_id: str, metric: str) -> ClassifiedState | None:
        self.classifier.require(metric)
        snapshot = self.latest_index.get(entity_id, metric)
        if snapshot is None:
            return None
        return self.classifier.classify_snapshot(snapshot)

    def classify_window(
        self,
        entity_id: str,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        timeout: float | None = None,
    ) -> list[TimelinePoint]:
        self.classifier.require(metric)
        return self.timeline(entity_id, metric, start, end, granularity, timeout=timeout)

    def service_status(self, entity_id: str) -> ServiceStatus | None:
        rule = self.classifier.service_status_rule
        if rule is None:
            return None
        queue = self.latest_index.get(entity_id, rule.queue_metric)
        wait = self.latest_index.get(entity_id, rule.wait_metric)
        if queue is None or wait is None:
            return None
        return ServiceStatus(
            entity_id=entity_id,
            status=self.classifier.service_status(queue.value, wait.value),
            queue_value=queue.value,
            wait_value=wait.value,
            timestamp=max(queue.timestamp, wait.timestamp),
        )

    def peak_window(
        self,
        entity_id: str | None,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        timeout: float | None = None,
    ) -> PeakWindow | None:
        return self.analyzer.peak_window(
            entity_id, metric, start, end, granularity, deadline=self._deadline(timeout)
        )

    def peak_hours(
        self,
        entity_id: str | None,
        metric: str,
        start: datetime,
        end: datetime,
        *,
        top: int = 3,
        timeout: float | None = None,
    ) -> list[HourOfDaySlot]:
        return self.analyzer.peak_hours(
            entity_id, metric, start, end, top=top, deadline=self._deadline(timeout)
        )

    def trend(
        self,
        entity_id: str,
        metric: str,
        current: Window,
        prior: Window,
        *,
        timeout: float | None = None,
    ) -> TrendResult:
        return self.analyzer.trend(
            entity_id, metric, current, prior, deadline=self._deadline(timeout)
        )

    def timeline(
        self,
        entity_id: str,
        metric: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOUR,
        *,
        timeout: float | None = None,
    ) -> list[TimelinePoint]:
        validate_window(start, end)
        return self.analyzer.timeline(
            entity_id, metric, start, end, granularity, deadline=self._deadline(timeout)
        )

    def compare(
        self,
        entity_ids: Iterable[str] | None,
        metric: str,
        start: datetime,
        end: datetime,
        *,
        sort_by: str = "avg",
        descending: bool = True,
        timeout: float | None = None,
    ) -> ComparisonReport:
        if entity_ids is None:
            entity_ids = self.bucket_aggregator.entities(metric)
        return self.ranker.compare(
            entity_ids,
            metric,
            start,
            end,
            sort_by=sort_by,
            descending=descending,
            deadline=self._deadline(timeout),
        )

    def congestion_rates(
        self,
        entity_ids: Iterable[str] | None,
        metric: str,
        start: datetime,
        end: datetime,
        *,
        timeout: float | None = None,
    ) -> CongestionRateReport:
        if entity_ids is None:
            entity_ids = self.bucket_aggregator.entities(metric)
        return self.ranker.congestion_rates(
            entity_ids, metric, start, end, deadline=self._deadline(timeout)
        )

    # maintenance

    def sweep(self) -> int:
        evicted = self.bucket_aggregator.sweep()
        if evicted:
            logger.info("Retention sweep evicted %d buckets", evicted)
        return evicted

    def stats(self) -> EngineStats:
        counts = self.bucket_aggregator.counts()
        with self._lock:
            accepted = self._accepted
        return EngineStats(
            accepted=accepted,
            rejected=self.normalizer.rejected_total,
            rejections_by_reason=self.normalizer.rejections(),
            tracked_keys=len(self.latest_index),
            hour_buckets=counts[Granularity.HOUR],
            day_buckets=counts[Granularity.DAY],
            evicted_buckets=self.bucket_aggregator.evicted_total,
            sealed_drops=self.bucket_aggregator.sealed_drops,
        )
