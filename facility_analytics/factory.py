from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from facility_analytics.api.router import api_router
from facility_analytics.core.config import Settings, load_settings
from facility_analytics.core.logging import configure_logging
from facility_analytics.services.engine import AnalyticsEngine

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, *, engine: AnalyticsEngine | None = None
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    # Invalid thresholds raise ConfigurationError here, before anything serves.
    engine = engine or AnalyticsEngine.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop_event: threading.Event | None = None
        sweep_thread: threading.Thread | None = None

        app.state.engine = engine

        if settings.sweep_interval_seconds > 0:
            stop_event = threading.Event()

            def _loop() -> None:
                while stop_event is not None and not stop_event.is_set():
                    try:
                        engine.sweep()
                    except Exception:
                        logger.exception("Retention sweep failed")
                    stop_event.wait(settings.sweep_interval_seconds)

            sweep_thread = threading.Thread(
                target=_loop, name="analytics-retention-sweep", daemon=True
            )
            sweep_thread.start()

        logger.info(
            "Analytics engine ready (metrics=%s, sweep_interval=%ss)",
            ",".join(engine.classifier.metrics),
            settings.sweep_interval_seconds,
        )
        yield
        if stop_event is not None:
            stop_event.set()
        if sweep_thread is not None and sweep_thread.is_alive():
            sweep_thread.join(timeout=2.0)

    docs_enabled = settings.docs_enabled and not settings.is_production
    app = FastAPI(
        title="Facility Analytics API",
        version="0.1.0",
        debug=settings.debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    if settings.trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

    @app.middleware("http")
    async def security_headers(request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        return response

    @app.get("/", tags=["meta"])
    def root():
        return {"name": "facility-analytics", "status": "ok"}

    app.include_router(api_router)
    return app
