from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

METRIC_PATTERN = r"^[a-zA-Z][a-zA-Z0-9:_-]{0,63}$"


class ReadingIn(BaseModel):
    # Left loose; the normalizer rejects with a reason instead of a 422.
    entity_id: str | None = None
    metric: str | None = None
    value: Any = None
    timestamp: datetime | str | float | None = None
    unit: str | None = Field(default=None, max_length=32)


class ReadingBatchIn(BaseModel):
    readings: list[ReadingIn] = Field(min_length=1, max_length=5000)


class ReadingOut(BaseModel):
    entity_id: str
    metric: str
    value: float
    timestamp: datetime
    unit: str | None = None


class AcceptResponse(BaseModel):
    accepted: bool
    reason: str | None = None
    detail: str | None = None
    reading: ReadingOut | None = None


class IngestSummaryOut(BaseModel):
    received: int = Field(ge=0)
    accepted: int = Field(ge=0)
    rejected: int = Field(ge=0)
    reasons: dict[str, int] = Field(default_factory=dict)


class LatestOut(BaseModel):
    entity_id: str
    metric: str
    value: float
    timestamp: datetime
    unit: str | None = None
