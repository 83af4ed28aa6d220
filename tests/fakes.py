from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from facility_analytics.models.reading import RawReading

BASE_TIME = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


@dataclass
class FakeClock:
    now: datetime = BASE_TIME

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def at(hour: int, minute: int = 0, *, day: int = 6) -> datetime:
    return datetime(2024, 5, day, hour, minute, tzinfo=timezone.utc)


def raw(
    entity_id: str | None,
    metric: str | None,
    value: object,
    timestamp: datetime | str | None,
    unit: str | None = None,
) -> RawReading:
    return RawReading(
        entity_id=entity_id, metric=metric, value=value, timestamp=timestamp, unit=unit
    )
