"""Vessel store writer — idempotent upsert of one vessel's latest state.

One ``INSERT ... ON CONFLICT (mmsi) DO UPDATE`` per call, committed
immediately. The conflict branch overwrites every column (last write wins);
with ``REJECT_STALE_UPDATES`` it only fires when the incoming report is not
older than the stored row.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aislive.config import settings
from aislive.models.vessel import VesselState

logger = logging.getLogger(__name__)


def build_upsert_statement(
    mmsi: int,
    lon: float,
    lat: float,
    course: float | None,
    name: str,
    last_seen: datetime,
    reject_stale: bool = False,
):
    """Build the upsert statement for one vessel row."""
    geom = func.ST_SetSRID(func.ST_MakePoint(lon, lat), 4326)
    stmt = pg_insert(VesselState).values(
        mmsi=mmsi,
        geom=geom,
        lat=lat,
        lon=lon,
        course=course,
        name=name,
        last_seen=last_seen,
    )
    excluded = stmt.excluded
    update_kwargs = dict(
        index_elements=[VesselState.mmsi],
        set_={
            "geom": excluded.geom,
            "lat": excluded.lat,
            "lon": excluded.lon,
            "course": excluded.course,
            "name": excluded.name,
            "last_seen": excluded.last_seen,
        },
    )
    if reject_stale:
        update_kwargs["where"] = VesselState.last_seen <= excluded.last_seen
    return stmt.on_conflict_do_update(**update_kwargs)


def upsert_vessel_state(
    db: Session,
    mmsi: int,
    lon: float,
    lat: float,
    course: float | None,
    name: str | None,
    last_seen: datetime,
    reject_stale: bool | None = None,
) -> bool:
    """Insert or fully overwrite the row for *mmsi*.

    Returns True on success. Store errors are rolled back and logged with the
    MMSI, and reported as False; they never propagate to the caller.
    """
    if reject_stale is None:
        reject_stale = settings.REJECT_STALE_UPDATES
    stmt = build_upsert_statement(
        mmsi, lon, lat, course, name or "", last_seen, reject_stale=reject_stale,
    )
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        logger.error("Error upserting vessel state for MMSI %s: %s", mmsi, exc)
        db.rollback()
        return False
    return True
