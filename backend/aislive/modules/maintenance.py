"""Housekeeping: delete vessels that have not reported for a long time."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aislive.config import settings
from aislive.models.vessel import VesselState

logger = logging.getLogger(__name__)


def purge_stale_vessels(
    db: Session, max_age_minutes: int | None = None, now: datetime | None = None,
) -> int:
    """Delete and commit vessels older than *max_age_minutes*. Returns count deleted."""
    if max_age_minutes is None:
        max_age_minutes = settings.VESSEL_MAX_AGE_MINUTES
    deleted = VesselState.purge_old(db, minutes=max_age_minutes, now=now)
    db.commit()
    logger.info("Deleted %d vessels not seen for %d minutes", deleted, max_age_minutes)
    return deleted


async def run_maintenance_loop(
    db_factory: Callable[[], Session] | None = None,
    interval_minutes: float | None = None,
    max_age_minutes: int | None = None,
    sleep: Callable[[float], object] = asyncio.sleep,
) -> None:
    """Purge immediately, then every *interval_minutes*, until cancelled.

    A failed run is logged and retried on the next tick.
    """
    if db_factory is None:
        from aislive.database import SessionLocal
        db_factory = SessionLocal
    if interval_minutes is None:
        interval_minutes = settings.CLEANUP_INTERVAL_MINUTES

    logger.info("Scheduled vessel cleanup every %g minutes", interval_minutes)
    while True:
        db = db_factory()
        try:
            await asyncio.to_thread(purge_stale_vessels, db, max_age_minutes)
        except SQLAlchemyError as exc:
            logger.error("Error deleting stale vessels: %s", exc)
            db.rollback()
        finally:
            db.close()
        await sleep(interval_minutes * 60)
