from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RejectReason(str, Enum):
    MISSING_ENTITY = "missing-entity"
    MISSING_METRIC = "missing-metric"
    MISSING_TIMESTAMP = "missing-timestamp"
    NON_FINITE = "non-finite"
    UNPARSEABLE_VALUE = "unparseable-value"
    FUTURE_SKEW = "future-skew"


@dataclass(frozen=True)
class RawReading:
    """Reading as handed over by the ingestion collaborator, not yet validated."""

    entity_id: str | None
    metric: str | None
    value: Any
    timestamp: datetime | str | None
    unit: str | None = None


@dataclass(frozen=True)
class Reading:
    entity_id: str
    metric: str
    value: float
    timestamp: datetime
    unit: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return self.entity_id, self.metric


@dataclass(frozen=True)
class RejectedReading:
    raw: RawReading
    reason: RejectReason
    detail: str | None = None


@dataclass(frozen=True)
class AcceptResult:
    accepted: bool
    reading: Reading | None = None
    reason: RejectReason | None = None
    detail: str | None = None


@dataclass(frozen=True)
class IngestSummary:
    received: int
    accepted: int
    rejected: int
    reasons: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class LatestSnapshot:
    entity_id: str
    metric: str
    value: float
    timestamp: datetime
    unit: str | None = None
