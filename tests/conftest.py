from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from facility_analytics.core.config import EngineConfig, Settings
from facility_analytics.factory import create_app
from facility_analytics.services.engine import AnalyticsEngine
from tests.fakes import FakeClock


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="test",
        debug=True,
        docs_enabled=False,
        log_level="DEBUG",
        cors_origins=["http://localhost"],
        trusted_hosts=["testserver", "localhost"],
        future_skew_seconds=300,
        flatness_epsilon_percent=1.0,
        hour_retention_hours=48,
        day_retention_days=30,
        bucket_grace_seconds=300,
        seal_final_buckets=False,
        sweep_interval_seconds=0,
        query_timeout_seconds=5.0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def config(settings: Settings) -> EngineConfig:
    return EngineConfig.from_settings(settings)


@pytest.fixture()
def engine(config: EngineConfig, clock: FakeClock) -> AnalyticsEngine:
    return AnalyticsEngine(config, clock=clock)


@pytest.fixture()
def client(settings: Settings, engine: AnalyticsEngine) -> TestClient:
    app = create_app(settings, engine=engine)
    with TestClient(app) as client:
        yield client
