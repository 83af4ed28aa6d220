from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from facility_analytics.core.config import Settings
from facility_analytics.core.errors import ConfigurationError
from facility_analytics.factory import create_app
from tests.fakes import at

WINDOW = {"start": at(8).isoformat(), "end": at(11).isoformat()}


def _post(client: TestClient, entity: str, metric: str, value, ts) -> dict:
    resp = client.post(
        "/api/v1/readings",
        json={"entity_id": entity, "metric": metric, "value": value, "timestamp": ts},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def _seed(client: TestClient) -> None:
    for minute, value in [(0, 3), (20, 12), (45, 20)]:
        _post(client, "A", "queue_length", value, at(9, minute).isoformat())
    for minute in (0, 30):
        _post(client, "B", "queue_length", 4, at(9, minute).isoformat())


def test_root(client: TestClient) -> None:
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_ingest_accepts_and_rejects(client: TestClient) -> None:
    ok = _post(client, "A", "queue_length", 5, at(9).isoformat())
    assert ok["accepted"] is True
    assert ok["reading"]["value"] == 5.0

    future = _post(client, "A", "queue_length", 5, "2024-05-06T12:10:00Z")
    assert future["accepted"] is False
    assert future["reason"] == "future-skew"
    assert future["reading"] is None

    missing = _post(client, None, "queue_length", 5, at(9).isoformat())
    assert missing["reason"] == "missing-entity"


def test_batch_ingest(client: TestClient) -> None:
    resp = client.post(
        "/api/v1/readings/batch",
        json={
            "readings": [
                {"entity_id": "A", "metric": "wait_time", "value": v, "timestamp": at(9).isoformat()}
                for v in ("15 Mins", "soon")
            ]
        },
    )
    assert resp.status_code == 200, resp.text
    assert resp.json() == {
        "received": 2,
        "accepted": 1,
        "rejected": 1,
        "reasons": {"unparseable-value": 1},
    }


def test_latest(client: TestClient) -> None:
    _seed(client)
    resp = client.get("/api/v1/latest", params={"entity_id": "A", "metric": "queue_length"})
    assert resp.status_code == 200
    assert resp.json()[0]["value"] == 20.0

    listing = client.get("/api/v1/latest", params={"metric": "queue_length"}).json()
    assert [row["entity_id"] for row in listing] == ["A", "B"]
    missing = client.get("/api/v1/latest", params={"entity_id": "C", "metric": "queue_length"})
    assert missing.status_code == 404


def test_buckets_and_rollup(client: TestClient) -> None:
    _seed(client)
    resp = client.get(
        "/api/v1/buckets", params={"entity_id": "A", "metric": "queue_length", **WINDOW}
    )
    assert resp.status_code == 200, resp.text
    (bucket,) = resp.json()
    assert (bucket["count"], bucket["min"], bucket["max"]) == (3, 3.0, 20.0)
    assert bucket["avg"] == pytest.approx(11.67, abs=0.01)
    assert bucket["final"] is True

    day = client.get(
        "/api/v1/buckets",
        params={
            "entity_id": "A",
            "metric": "queue_length",
            "granularity": "day",
            "rollup": True,
            "start": at(0).isoformat(),
            "end": at(0, day=7).isoformat(),
        },
    )
    assert day.status_code == 200, day.text
    assert day.json()[0]["count"] == 3


def test_overflowed_bucket_reports_null_sum_and_average(client: TestClient) -> None:
    for minute in (0, 30):
        _post(client, "A", "queue_length", 1e308, at(9, minute).isoformat())
    resp = client.get(
        "/api/v1/buckets", params={"entity_id": "A", "metric": "queue_length", **WINDOW}
    )
    assert resp.status_code == 200, resp.text
    (bucket,) = resp.json()
    assert bucket["count"] == 2
    assert bucket["sum"] is None
    assert bucket["avg"] is None


def test_inverted_window_is_400(client: TestClient) -> None:
    resp = client.get(
        "/api/v1/buckets",
        params={
            "entity_id": "A",
            "metric": "queue_length",
            "start": at(11).isoformat(),
            "end": at(8).isoformat(),
        },
    )
    assert resp.status_code == 400


def test_classification_and_timeline(client: TestClient) -> None:
    _seed(client)
    resp = client.get("/api/v1/classification", params={"entity_id": "A", "metric": "queue_length"})
    assert resp.status_code == 200
    assert resp.json()["category"] == {"label": "HIGH", "rank": 2}

    unknown = client.get("/api/v1/classification", params={"entity_id": "A", "metric": "temperature"})
    assert unknown.status_code == 400

    timeline = client.get(
        "/api/v1/timeline", params={"entity_id": "A", "metric": "queue_length", **WINDOW}
    )
    assert timeline.status_code == 200
    assert timeline.json()[0]["category"] == "MEDIUM"


def test_service_status(client: TestClient) -> None:
    assert client.get("/api/v1/service-status", params={"entity_id": "A"}).status_code == 404
    _post(client, "A", "queue_length", 0, at(9).isoformat())
    _post(client, "A", "wait_time", "Ready to Serve", at(9).isoformat())
    resp = client.get("/api/v1/service-status", params={"entity_id": "A"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "READY_TO_SERVE"


def test_peak_and_peak_hours(client: TestClient) -> None:
    _seed(client)
    _post(client, "A", "queue_length", 1, at(10).isoformat())
    peak = client.get("/api/v1/peak", params={"entity_id": "A", "metric": "queue_length", **WINDOW})
    assert peak.status_code == 200
    assert peak.json()["bucket_start"].startswith("2024-05-06T09:00:00")

    hours = client.get("/api/v1/peak-hours", params={"metric": "queue_length", **WINDOW})
    assert hours.status_code == 200
    assert [s["hour"] for s in hours.json()] == [9, 10]

    empty = client.get("/api/v1/peak", params={"entity_id": "Z", "metric": "queue_length", **WINDOW})
    assert empty.status_code == 404


def test_trend_defaults_to_previous_window(client: TestClient) -> None:
    _post(client, "A", "queue_length", 10, at(8).isoformat())
    _post(client, "A", "queue_length", 15, at(9).isoformat())
    resp = client.get(
        "/api/v1/trend",
        params={
            "entity_id": "A",
            "metric": "queue_length",
            "start": at(9).isoformat(),
            "end": at(10).isoformat(),
        },
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "ok"
    assert body["direction"] == "UP"
    assert body["percentage_change"] == pytest.approx(50.0)


def test_comparison(client: TestClient) -> None:
    _seed(client)
    resp = client.get(
        "/api/v1/comparison",
        params={"metric": "queue_length", "entity_id": ["A", "B", "C"], **WINDOW},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["busiest"] == "A"
    assert body["least_busy"] == "B"
    assert body["no_data"] == ["C"]
    assert [e["rank"] for e in body["entries"]] == [1, 2]

    bad = client.get("/api/v1/comparison", params={"metric": "queue_length", "sort_by": "median"})
    assert bad.status_code == 422


def test_congestion_rates(client: TestClient) -> None:
    _seed(client)
    resp = client.get(
        "/api/v1/congestion-rates",
        params={"metric": "queue_length", "entity_id": ["A", "B"], **WINDOW},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["congested_label"] == "HIGH"
    assert body["entries"][0]["congestion_rate"] == 0.0


def test_stats(client: TestClient) -> None:
    _seed(client)
    _post(client, "A", "queue_length", "???", at(9).isoformat())
    body = client.get("/api/v1/stats").json()
    assert body["accepted"] == 5
    assert body["rejected"] == 1
    assert body["tracked_keys"] == 2


def test_invalid_thresholds_prevent_startup(settings: Settings) -> None:
    broken = settings.model_copy(update={"thresholds": {"queue_length": []}})
    with pytest.raises(ConfigurationError):
        create_app(broken)
