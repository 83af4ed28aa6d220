from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from facility_analytics.api.deps import Engine
from facility_analytics.models.reading import AcceptResult, RawReading
from facility_analytics.schemas.readings import (
    METRIC_PATTERN,
    AcceptResponse,
    IngestSummaryOut,
    LatestOut,
    ReadingBatchIn,
    ReadingIn,
    ReadingOut,
)

router = APIRouter()


def _to_raw(payload: ReadingIn) -> RawReading:
    return RawReading(
        entity_id=payload.entity_id,
        metric=payload.metric,
        value=payload.value,
        timestamp=payload.timestamp,
        unit=payload.unit,
    )


def _to_response(result: AcceptResult) -> AcceptResponse:
    if not result.accepted or result.reading is None:
        return AcceptResponse(
            accepted=False,
            reason=result.reason.value if result.reason is not None else None,
            detail=result.detail,
        )
    return AcceptResponse(
        accepted=True, reading=ReadingOut.model_validate(result.reading.__dict__)
    )


@router.post("/readings", response_model=AcceptResponse)
def ingest_reading(payload: ReadingIn, engine: Engine) -> AcceptResponse:
    # Rejections are a normal outcome, reported in the body with a 200.
    return _to_response(engine.ingest(_to_raw(payload)))


@router.post("/readings/batch", response_model=IngestSummaryOut)
def ingest_batch(payload: ReadingBatchIn, engine: Engine) -> IngestSummaryOut:
    summary = engine.ingest_many(_to_raw(r) for r in payload.readings)
    return IngestSummaryOut.model_validate(summary.__dict__)


@router.get("/latest", response_model=list[LatestOut])
def list_latest(
    engine: Engine,
    metric: Annotated[str | None, Query(max_length=64, pattern=METRIC_PATTERN)] = None,
    entity_id: Annotated[str | None, Query(min_length=1, max_length=128)] = None,
) -> list[LatestOut]:
    if entity_id is not None:
        if metric is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="'metric' is required when 'entity_id' is given",
            )
        snapshot = engine.latest(entity_id, metric)
        if snapshot is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No data")
        return [LatestOut.model_validate(snapshot.__dict__)]
    return [LatestOut.model_validate(s.__dict__) for s in engine.latest_all(metric=metric)]
