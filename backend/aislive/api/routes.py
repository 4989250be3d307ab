import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from aislive.api.rate_limit import limiter
from aislive.database import get_db
from aislive.schemas.error import ErrorResponse
from aislive.schemas.vessel import VesselPosition

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Vessels
# ---------------------------------------------------------------------------

@router.get(
    "/vessels",
    tags=["vessels"],
    response_model=list[VesselPosition],
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit("120/minute")
def list_vessels_in_bbox(
    request: Request,
    min_lon: Optional[float] = Query(None, alias="min-lon", description="West edge, -180..180"),
    min_lat: Optional[float] = Query(None, alias="min-lat", description="South edge, -90..90"),
    max_lon: Optional[float] = Query(None, alias="max-lon", description="East edge, -180..180"),
    max_lat: Optional[float] = Query(None, alias="max-lat", description="North edge, -90..90"),
    db: Session = Depends(get_db),
):
    """Vessels seen within the freshness window inside the bounding box.

    ``min-lon > max-lon`` selects a box crossing the antimeridian.
    """
    from aislive.modules.vessel_query import query_vessels_in_bbox

    vessels = query_vessels_in_bbox(db, min_lon, min_lat, max_lon, max_lat)
    logger.info(
        "Found %d vessels for bbox [%s, %s, %s, %s]",
        len(vessels), min_lon, min_lat, max_lon, max_lat,
    )
    return vessels


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@router.get("/ingestion-status", tags=["ingestion"])
def ingestion_status(request: Request):
    """Return the live aisstream session state and pipeline counters."""
    state = getattr(request.app, "state", None)
    supervisor = getattr(state, "supervisor", None) if state else None
    pipeline = getattr(state, "pipeline", None) if state else None
    if supervisor is None:
        return {"state": "disabled"}
    status = supervisor.status()
    if pipeline is not None:
        status["pipeline"] = dict(pipeline.stats)
    return status
