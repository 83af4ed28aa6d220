from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from facility_analytics.services.engine import AnalyticsEngine


def get_engine(request: Request) -> AnalyticsEngine:
    engine = getattr(request.app.state, "engine", None)
    if not isinstance(engine, AnalyticsEngine):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics engine not ready",
        )
    return engine


Engine = Annotated[AnalyticsEngine, Depends(get_engine)]
