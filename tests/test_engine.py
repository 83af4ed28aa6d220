from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from facility_analytics.core.config import EngineConfig, Settings
from facility_analytics.core.errors import DeadlineExceededError, UnknownMetricError
from facility_analytics.models.bucket import Granularity
from facility_analytics.models.reading import RejectReason
from facility_analytics.services.engine import AnalyticsEngine
from tests.fakes import BASE_TIME, FakeClock, at, raw


def test_queue_hour_bucket_scenario(engine: AnalyticsEngine) -> None:
    for minute, value in [(0, 3), (20, 12), (45, 20)]:
        assert engine.ingest(raw("A", "queue_length", value, at(9, minute))).accepted

    (bucket,) = engine.buckets("A", "queue_length", at(9), at(10))
    assert (bucket.min, bucket.max, bucket.count) == (3, 20, 3)
    assert round(bucket.average, 2) == 11.67
    (point,) = engine.classify_window("A", "queue_length", at(9), at(10))
    assert point.category == "MEDIUM"


def test_future_skew_scenario(engine: AnalyticsEngine) -> None:
    result = engine.ingest(raw("A", "queue_length", 3, BASE_TIME + timedelta(minutes=10)))
    assert not result.accepted
    assert result.reason is RejectReason.FUTURE_SKEW
    assert engine.latest("A", "queue_length") is None
    assert engine.stats().rejections_by_reason == {"future-skew": 1}


def test_duplicate_delivery(engine: AnalyticsEngine) -> None:
    reading = raw("A", "queue_length", 7, at(9, 30))
    engine.ingest(reading)
    first = engine.latest("A", "queue_length")
    engine.ingest(reading)

    assert engine.latest("A", "queue_length") == first
    (bucket,) = engine.buckets("A", "queue_length", at(9), at(10))
    assert bucket.count == 2
    assert bucket.min == bucket.max == 7


def test_latest_tracks_newest_timestamp(engine: AnalyticsEngine) -> None:
    engine.ingest(raw("A", "queue_length", 9, at(10)))
    engine.ingest(raw("A", "queue_length", 1, at(9)))
    snapshot = engine.latest("A", "queue_length")
    assert snapshot is not None
    assert snapshot.value == 9
    assert [s.entity_id for s in engine.latest_all(metric="queue_length")] == ["A"]


def test_classify_latest(engine: AnalyticsEngine) -> None:
    assert engine.classify_latest("A", "occupancy_percent") is None
    engine.ingest(raw("A", "occupancy_percent", 82, at(9)))
    state = engine.classify_latest("A", "occupancy_percent")
    assert state is not None
    assert state.category.label == "HIGH"
    with pytest.raises(UnknownMetricError):
        engine.classify_latest("A", "temperature")


def test_service_status_combines_latest_queue_and_wait(engine: AnalyticsEngine) -> None:
    assert engine.service_status("A") is None
    engine.ingest(raw("A", "queue_length", 3, at(9)))
    assert engine.service_status("A") is None
    engine.ingest(raw("A", "wait_time", "5-10 mins", at(9, 5)))

    status = engine.service_status("A")
    assert status is not None
    assert status.status == "MEDIUM_WAIT"
    assert status.wait_value == 7.5
    assert status.timestamp == at(9, 5)


def test_daily_rollup_matches_direct_day_buckets(engine: AnalyticsEngine) -> None:
    for hour in range(12):
        for minute in (5, 35):
            engine.ingest(raw("A", "queue_length", hour * 0.1 + minute / 7, at(hour, minute)))
    rolled = engine.daily_rollup("A", "queue_length", at(0), at(0, day=7))
    direct = engine.buckets("A", "queue_length", at(0), at(0, day=7), Granularity.DAY)
    assert [(b.count, b.sum, b.min, b.max) for b in rolled] == [
        (b.count, b.sum, b.min, b.max) for b in direct
    ]


def test_ingest_many_summarizes_batch(engine: AnalyticsEngine) -> None:
    summary = engine.ingest_many(
        [
            raw("A", "queue_length", 1, at(9)),
            raw("A", "queue_length", "n/a", at(9)),
            raw(None, "queue_length", 1, at(9)),
            {
                "entity_id": "B",
                "metric": "queue_length",
                "value": 2,
                "timestamp": "2024-05-06T09:00:00Z",
            },
        ]
    )
    assert (summary.received, summary.accepted, summary.rejected) == (4, 2, 2)
    assert summary.reasons == {"unparseable-value": 1, "missing-entity": 1}


def test_stats_and_sweep(engine: AnalyticsEngine, clock: FakeClock) -> None:
    engine.ingest(raw("A", "queue_length", 1, at(9)))
    engine.ingest(raw("B", "queue_length", 1, at(10)))
    stats = engine.stats()
    assert (stats.accepted, stats.tracked_keys, stats.hour_buckets, stats.day_buckets) == (
        2,
        2,
        2,
        2,
    )

    clock.advance(days=3)
    assert engine.sweep() == 2
    stats = engine.stats()
    assert stats.hour_buckets == 0
    assert stats.day_buckets == 2
    assert stats.evicted_buckets == 2


def test_query_timeout_raises_deadline_error(engine: AnalyticsEngine) -> None:
    engine.ingest(raw("A", "queue_length", 1, at(9)))
    with pytest.raises(DeadlineExceededError):
        engine.buckets("A", "queue_length", at(0), at(12), timeout=-1.0)


def test_required_metrics_are_checked_at_startup(config: EngineConfig) -> None:
    with pytest.raises(UnknownMetricError):
        AnalyticsEngine(config, required_metrics=["queue_length", "temperature"])


def test_from_settings_builds_engine(settings: Settings, clock: FakeClock) -> None:
    engine = AnalyticsEngine.from_settings(settings, clock=clock)
    assert engine.config.hour_retention == timedelta(hours=48)
    assert engine.classifier.metrics == ["occupancy_percent", "queue_length", "wait_time"]


def test_concurrent_ingestion_and_queries(engine: AnalyticsEngine) -> None:
    entities = ["A", "B", "C", "D"]
    per_entity = 200
    errors: list[BaseException] = []

    def writer(entity: str) -> None:
        for i in range(per_entity):
            engine.ingest(raw(entity, "queue_length", i % 17, at(9, i % 60)))

    def reader() -> None:
        try:
            for _ in range(50):
                engine.compare(entities, "queue_length", at(9), at(10))
                engine.peak_window(None, "queue_length", at(9), at(10))
        except BaseException as e:  # noqa: BLE001 - surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(e,)) for e in entities]
    threads += [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    report = engine.compare(entities, "queue_length", at(9), at(10))
    assert [e.summary.count for e in report.entries] == [per_entity] * len(entities)
    assert engine.stats().accepted == per_entity * len(entities)
