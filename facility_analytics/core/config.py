from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from facility_analytics.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ThresholdBand(BaseModel):
    label: str = Field(min_length=1, max_length=64)
    upper: float | None = None


class ServiceStatusRuleSettings(BaseModel):
    queue_metric: str = Field(default="queue_length", min_length=1)
    wait_metric: str = Field(default="wait_time", min_length=1)
    statuses: list[str] = Field(
        default_factory=lambda: ["READY_TO_SERVE", "SHORT_WAIT", "MEDIUM_WAIT", "LONG_WAIT"]
    )
    queue_bounds: list[float] = Field(default_factory=lambda: [0.0, 5.0, 15.0])
    wait_bounds: list[float] = Field(default_factory=lambda: [0.0, 5.0, 15.0])


def _default_thresholds() -> dict[str, list[ThresholdBand]]:
    return {
        "queue_length": [
            ThresholdBand(label="LOW", upper=5),
            ThresholdBand(label="MEDIUM", upper=15),
            ThresholdBand(label="HIGH"),
        ],
        "wait_time": [
            ThresholdBand(label="SHORT", upper=5),
            ThresholdBand(label="MEDIUM", upper=15),
            ThresholdBand(label="LONG"),
        ],
        "occupancy_percent": [
            ThresholdBand(label="LOW", upper=40),
            ThresholdBand(label="MEDIUM", upper=75),
            ThresholdBand(label="HIGH"),
        ],
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ANALYTICS_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    env: str = Field(default="development")
    debug: bool = Field(default=False)
    docs_enabled: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])

    future_skew_seconds: float = Field(default=300.0, ge=0.0, le=86_400.0)
    flatness_epsilon_percent: float = Field(default=1.0, ge=0.0, le=100.0)
    hour_retention_hours: int = Field(default=24 * 14, ge=1, le=24 * 366)
    day_retention_days: int = Field(default=400, ge=1, le=3660)
    bucket_grace_seconds: float = Field(default=300.0, ge=0.0, le=86_400.0)
    seal_final_buckets: bool = Field(default=False)
    sweep_interval_seconds: float = Field(default=60.0, ge=0.0, le=3600.0)
    query_timeout_seconds: float = Field(default=5.0, ge=0.0, le=300.0)

    thresholds: dict[str, list[ThresholdBand]] = Field(default_factory=_default_thresholds)
    service_status: ServiceStatusRuleSettings | None = Field(
        default_factory=ServiceStatusRuleSettings
    )

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


def load_settings() -> Settings:
    settings = Settings()
    if not settings.cors_origins:
        settings.cors_origins = ["http://localhost:3000", "http://localhost:8000"]
    return settings


@dataclass(frozen=True)
class ThresholdTable:
    """Ordered, upper-inclusive bands for one metric.

    ``labels`` has one more entry than ``bounds``; the last label is the
    open-ended band above every bound.
    """

    metric: str
    labels: tuple[str, ...]
    bounds: tuple[float, ...]

    def __post_init__(self) -> None:
        if not self.labels or len(self.labels) != len(self.bounds) + 1:
            raise ConfigurationError(
                f"Thresholds for '{self.metric}' need exactly one label more than bounds"
            )
        if len(set(self.labels)) != len(self.labels):
            raise ConfigurationError(f"Duplicate labels in thresholds for '{self.metric}'")
        if any(not math.isfinite(b) for b in self.bounds):
            raise ConfigurationError(f"Non-finite bound in thresholds for '{self.metric}'")
        if any(a >= b for a, b in zip(self.bounds, self.bounds[1:])):
            raise ConfigurationError(
                f"Bounds for '{self.metric}' must be strictly ascending: {list(self.bounds)}"
            )

    @classmethod
    def from_bands(cls, metric: str, bands: list[ThresholdBand]) -> ThresholdTable:
        if not bands:
            raise ConfigurationError(f"Empty threshold table for '{metric}'")
        *bounded, terminal = bands
        if terminal.upper is not None:
            raise ConfigurationError(
                f"Last band of '{metric}' must be open-ended (no upper bound)"
            )
        bounds: list[float] = []
        for band in bounded:
            if band.upper is None:
                raise ConfigurationError(
                    f"Band '{band.label}' of '{metric}' needs an upper bound"
                )
            bounds.append(float(band.upper))
        return cls(
            metric=metric,
            labels=tuple(b.label for b in bands),
            bounds=tuple(bounds),
        )

    @property
    def terminal_rank(self) -> int:
        return len(self.labels) - 1

    def rank_of(self, value: float) -> int:
        # First bound >= value; past every bound lands on the terminal band.
        return bisect.bisect_left(self.bounds, value)


@dataclass(frozen=True)
class ServiceStatusRule:
    queue_metric: str
    wait_metric: str
    queue: ThresholdTable
    wait: ThresholdTable

    @property
    def statuses(self) -> tuple[str, ...]:
        return self.queue.labels

    @classmethod
    def from_settings(cls, rule: ServiceStatusRuleSettings) -> ServiceStatusRule:
        statuses = tuple(rule.statuses)
        if len(statuses) < 2:
            raise ConfigurationError("Service status rule needs at least two statuses")
        return cls(
            queue_metric=rule.queue_metric,
            wait_metric=rule.wait_metric,
            queue=ThresholdTable(
                metric=rule.queue_metric,
                labels=statuses,
                bounds=tuple(float(b) for b in rule.queue_bounds),
            ),
            wait=ThresholdTable(
                metric=rule.wait_metric,
                labels=statuses,
                bounds=tuple(float(b) for b in rule.wait_bounds),
            ),
        )


@dataclass(frozen=True)
class EngineConfig:
    thresholds: Mapping[str, ThresholdTable] = field(
        default_factory=lambda: MappingProxyType({})
    )
    service_status: ServiceStatusRule | None = None
    future_skew: timedelta = timedelta(minutes=5)
    flatness_epsilon: float = 1.0
    hour_retention: timedelta = timedelta(days=14)
    day_retention: timedelta = timedelta(days=400)
    bucket_grace: timedelta = timedelta(minutes=5)
    seal_final_buckets: bool = False
    query_timeout_seconds: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        try:
            tables = {
                metric: ThresholdTable.from_bands(metric, bands)
                for metric, bands in settings.thresholds.items()
            }
            rule = (
                ServiceStatusRule.from_settings(settings.service_status)
                if settings.service_status is not None
                else None
            )
        except ConfigurationError:
            logger.error("Invalid analytics configuration", exc_info=True)
            raise
        return cls(
            thresholds=MappingProxyType(tables),
            service_status=rule,
            future_skew=timedelta(seconds=settings.future_skew_seconds),
            flatness_epsilon=settings.flatness_epsilon_percent,
            hour_retention=timedelta(hours=settings.hour_retention_hours),
            day_retention=timedelta(days=settings.day_retention_days),
            bucket_grace=timedelta(seconds=settings.bucket_grace_seconds),
            seal_final_buckets=settings.seal_final_buckets,
            query_timeout_seconds=settings.query_timeout_seconds or None,
        )
