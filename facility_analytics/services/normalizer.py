from __future__ import annotations

import logging
import math
import re
import threading
from datetime import timedelta
from typing import Any, Mapping

from facility_analytics.core.timeutil import Clock, parse_timestamp, utc_now
from facility_analytics.models.reading import RawReading, Reading, RejectedReading, RejectReason

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


def parse_wait_minutes(text: str) -> float | None:
    """Turn counter display text into minutes.

    "Ready to Serve" / "no wait" -> 0, "5-10 mins" -> 7.5, "15 Mins" -> 15.
    """
    normalized = text.strip().lower()
    if not normalized:
        return None
    if "ready" in normalized or "no wait" in normalized:
        return 0.0
    match = _RANGE_RE.search(normalized)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        return (low + high) / 2.0
    match = _NUMBER_RE.search(normalized)
    if match:
        return float(match.group(0))
    return None


def _coerce_raw(raw: RawReading | Reading | Mapping[str, Any]) -> RawReading:
    if isinstance(raw, RawReading):
        return raw
    if isinstance(raw, Reading):
        return RawReading(
            entity_id=raw.entity_id,
            metric=raw.metric,
            value=raw.value,
            timestamp=raw.timestamp,
            unit=raw.unit,
        )
    return RawReading(
        entity_id=raw.get("entity_id"),
        metric=raw.get("metric"),
        value=raw.get("value"),
        timestamp=raw.get("timestamp"),
        unit=raw.get("unit"),
    )


class ReadingNormalizer:
    def __init__(self, *, future_skew: timedelta, clock: Clock = utc_now) -> None:
        self._future_skew = future_skew
        self._clock = clock
        self._lock = threading.Lock()
        self._rejections: dict[RejectReason, int] = {}

    def normalize(self, raw: RawReading | Reading | Mapping[str, Any]) -> Reading | RejectedReading:
        candidate = _coerce_raw(raw)

        entity_id = candidate.entity_id.strip() if isinstance(candidate.entity_id, str) else ""
        if not entity_id:
            return self._reject(candidate, RejectReason.MISSING_ENTITY)
        metric = candidate.metric.strip() if isinstance(candidate.metric, str) else ""
        if not metric:
            return self._reject(candidate, RejectReason.MISSING_METRIC)

        timestamp = parse_timestamp(candidate.timestamp)
        if timestamp is None:
            return self._reject(candidate, RejectReason.MISSING_TIMESTAMP)

        value, reason = self._coerce_value(candidate.value)
        if reason is not None:
            return self._reject(candidate, reason, detail=repr(candidate.value))

        now = self._clock()
        if timestamp - now > self._future_skew:
            return self._reject(
                candidate,
                RejectReason.FUTURE_SKEW,
                detail=f"{(timestamp - now).total_seconds():.0f}s ahead",
            )

        return Reading(
            entity_id=entity_id,
            metric=metric,
            value=value,
            timestamp=timestamp,
            unit=candidate.unit,
        )

    @staticmethod
    def _coerce_value(value: Any) -> tuple[float, RejectReason | None]:
        if value is None:
            return math.nan, RejectReason.NON_FINITE
        if isinstance(value, bool):
            return math.nan, RejectReason.UNPARSEABLE_VALUE
        if isinstance(value, (int, float)):
            try:
                number = float(value)
            except OverflowError:
                # Integers beyond the float range.
                return math.nan, RejectReason.NON_FINITE
        elif isinstance(value, str):
            try:
                number = float(value)
            except ValueError:
                parsed = parse_wait_minutes(value)
                if parsed is None:
                    return math.nan, RejectReason.UNPARSEABLE_VALUE
                number = parsed
        else:
            return math.nan, RejectReason.UNPARSEABLE_VALUE
        if not math.isfinite(number):
            return number, RejectReason.NON_FINITE
        return number, None

    def _reject(
        self, raw: RawReading, reason: RejectReason, *, detail: str | None = None
    ) -> RejectedReading:
        with self._lock:
            self._rejections[reason] = self._rejections.get(reason, 0) + 1
        logger.debug(
            "Rejected reading entity=%s metric=%s reason=%s detail=%s",
            raw.entity_id,
            raw.metric,
            reason.value,
            detail,
        )
        return RejectedReading(raw=raw, reason=reason, detail=detail)

    def rejections(self) -> dict[str, int]:
        with self._lock:
            return {reason.value: count for reason, count in self._rejections.items()}

    @property
    def rejected_total(self) -> int:
        with self._lock:
            return sum(self._rejections.values())
