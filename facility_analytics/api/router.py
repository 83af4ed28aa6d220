from fastapi import APIRouter

from facility_analytics.api.routes import analytics, readings

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(readings.router, tags=["readings"])
api_router.include_router(analytics.router, tags=["analytics"])
