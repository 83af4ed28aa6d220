from __future__ import annotations

from typing import Mapping

from facility_analytics.core.config import ServiceStatusRule, ThresholdTable
from facility_analytics.core.errors import ConfigurationError, UnknownMetricError
from facility_analytics.models.analytics import Category, ClassifiedState
from facility_analytics.models.bucket import Bucket
from facility_analytics.models.reading import LatestSnapshot


class Classifier:
    """Maps metric values to ordinal categories using configured bands.

    Pure and stateless apart from the immutable tables it was built with.
    """

    def __init__(
        self,
        thresholds: Mapping[str, ThresholdTable],
        service_status: ServiceStatusRule | None = None,
    ) -> None:
        self._tables = dict(thresholds)
        self._service_status = service_status

    @property
    def metrics(self) -> list[str]:
        return sorted(self._tables)

    def has(self, metric: str) -> bool:
        return metric in self._tables

    def require(self, metric: str) -> ThresholdTable:
        table = self._tables.get(metric)
        if table is None:
            raise UnknownMetricError(metric)
        return table

    def classify(self, metric: str, value: float) -> Category:
        table = self.require(metric)
        rank = table.rank_of(value)
        return Category(metric=metric, label=table.labels[rank], rank=rank)

    def classify_snapshot(self, snapshot: LatestSnapshot) -> ClassifiedState:
        return ClassifiedState(
            entity_id=snapshot.entity_id,
            metric=snapshot.metric,
            value=snapshot.value,
            timestamp=snapshot.timestamp,
            category=self.classify(snapshot.metric, snapshot.value),
        )

    def classify_bucket(self, bucket: Bucket) -> Category | None:
        avg = bucket.average
        if avg is None:
            return None
        return self.classify(bucket.metric, avg)

    def label_for(self, metric: str, value: float | None) -> str | None:
        """Category label when the metric has thresholds and a value exists."""
        if value is None or metric not in self._tables:
            return None
        return self.classify(metric, value).label

    @property
    def service_status_rule(self) -> ServiceStatusRule | None:
        return self._service_status

    def service_status(self, queue_value: float, wait_value: float) -> str:
        # Either dimension at its top band forces the top status; otherwise
        # the more severe of the two ranks decides.
        rule = self._service_status
        if rule is None:
            raise ConfigurationError("No service status rule configured")
        queue_rank = rule.queue.rank_of(queue_value)
        wait_rank = rule.wait.rank_of(wait_value)
        if queue_rank == rule.queue.terminal_rank or wait_rank == rule.wait.terminal_rank:
            return rule.statuses[-1]
        return rule.statuses[max(queue_rank, wait_rank)]
