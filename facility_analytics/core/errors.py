from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from facility_analytics.models.bucket import Bucket


class AnalyticsError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(AnalyticsError):
    """Invalid threshold tables or settings. Fatal at startup."""


class UnknownMetricError(ConfigurationError):
    def __init__(self, metric: str) -> None:
        super().__init__(f"No classification thresholds configured for metric '{metric}'")
        self.metric = metric


class QueryRangeError(AnalyticsError):
    def __init__(self, start: datetime, end: datetime) -> None:
        super().__init__(f"Empty or inverted query window: [{start.isoformat()}, {end.isoformat()})")
        self.start = start
        self.end = end


class DeadlineExceededError(AnalyticsError):
    """Raised when a query runs past its caller-supplied deadline.

    ``partial`` holds the buckets collected before the deadline hit and
    ``covered_until`` the instant up to which the range was scanned.
    """

    def __init__(self, *, partial: list[Bucket], covered_until: datetime | None) -> None:
        super().__init__("Query deadline exceeded before the full range was scanned")
        self.partial = partial
        self.covered_until = covered_until
