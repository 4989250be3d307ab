"""Spatial query service — fresh vessels inside a lon/lat bounding box.

A box whose ``min_lon`` is greater than its ``max_lon`` crosses the
antimeridian and is split into two envelopes, ``[min_lon, 180]`` and
``[-180, max_lon]``.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from aislive.config import settings
from aislive.exceptions import BoundingBoxError
from aislive.models.vessel import VesselState

logger = logging.getLogger(__name__)

Envelope = tuple[float, float, float, float]

_BOUNDS = {
    "min-lon": (-180.0, 180.0),
    "min-lat": (-90.0, 90.0),
    "max-lon": (-180.0, 180.0),
    "max-lat": (-90.0, 90.0),
}


def _check_bound(param: str, value: Any) -> float:
    if value is None:
        raise BoundingBoxError(f"{param} is required", param=param)
    if isinstance(value, bool):
        raise BoundingBoxError(f"{param} must be a number", param=param)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise BoundingBoxError(f"{param} must be a number, got {value!r}", param=param) from None
    if not math.isfinite(number):
        raise BoundingBoxError(f"{param} must be finite", param=param)
    low, high = _BOUNDS[param]
    if not (low <= number <= high):
        raise BoundingBoxError(f"{param} must be between {low:g} and {high:g}, got {number:g}", param=param)
    return number


def validate_bbox(
    min_lon: Any, min_lat: Any, max_lon: Any, max_lat: Any,
) -> Envelope:
    """Check query bounds and return them as floats.

    Raises BoundingBoxError for missing, non-numeric, out-of-range values or
    an inverted latitude range. An inverted longitude range is valid (it
    crosses the antimeridian).
    """
    box = (
        _check_bound("min-lon", min_lon),
        _check_bound("min-lat", min_lat),
        _check_bound("max-lon", max_lon),
        _check_bound("max-lat", max_lat),
    )
    if box[1] > box[3]:
        raise BoundingBoxError("min-lat must be <= max-lat", param="min-lat")
    return box


def split_antimeridian(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> list[Envelope]:
    """Return the envelopes covering the box, two when it wraps past 180°."""
    if min_lon <= max_lon:
        return [(min_lon, min_lat, max_lon, max_lat)]
    return [
        (min_lon, min_lat, 180.0, max_lat),
        (-180.0, min_lat, max_lon, max_lat),
    ]


def query_vessels_in_bbox(
    db: Session,
    min_lon: Any,
    min_lat: Any,
    max_lon: Any,
    max_lat: Any,
    now: Optional[datetime] = None,
    freshness: Optional[timedelta] = None,
) -> list[dict]:
    """Vessels inside the box whose last report is within the freshness window.

    Bounds are validated before the store is touched. Store errors propagate.
    """
    box = validate_bbox(min_lon, min_lat, max_lon, max_lat)
    now = now or datetime.now(timezone.utc)
    if freshness is None:
        freshness = timedelta(seconds=settings.VESSEL_FRESHNESS_SECONDS)
    cutoff = now - freshness

    envelopes = [
        VesselState.geom.intersects(func.ST_MakeEnvelope(x1, y1, x2, y2, 4326))
        for x1, y1, x2, y2 in split_antimeridian(*box)
    ]

    rows = (
        db.query(VesselState.mmsi, VesselState.lat, VesselState.lon, VesselState.course)
        .filter(VesselState.last_seen >= cutoff, or_(*envelopes))
        .all()
    )

    vessels = [
        {
            "mmsi": row.mmsi,
            "lat": float(row.lat),
            "lon": float(row.lon),
            "course": float(row.course) if row.course is not None else None,
        }
        for row in rows
    ]
    logger.debug("Found %d vessels for bbox %s", len(vessels), box)
    return vessels
