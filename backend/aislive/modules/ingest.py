"""Ingestion pipeline: decode → validate → normalize → upsert, one frame at a time.

``IngestionPipeline`` is the message callback registered with the
aisstream supervisor. It never raises for a bad frame or a failed write:
each problem is logged, counted, and the frame is dropped.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from aislive.config import settings
from aislive.modules.decoder import DecodeError, PositionReport, decode_frame
from aislive.modules.normalize import normalize_report_time, validate_position
from aislive.modules.vessel_store import upsert_vessel_state

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Turns raw feed frames into vessel state upserts."""

    def __init__(
        self,
        db_factory: Callable[[], Session] | None = None,
        writer: Callable[..., bool] = upsert_vessel_state,
        clock: Callable[[], datetime] | None = None,
        write_timeout: float | None = None,
    ) -> None:
        if db_factory is None:
            from aislive.database import SessionLocal
            db_factory = SessionLocal
        self._db_factory = db_factory
        self._writer = writer
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.write_timeout = (
            write_timeout if write_timeout is not None else settings.INGEST_WRITE_TIMEOUT
        )
        self.stats: dict[str, Any] = {
            "received": 0,
            "stored": 0,
            "discarded_kind": 0,
            "discarded_decode": 0,
            "discarded_invalid": 0,
            "write_failures": 0,
            "last_stored_utc": None,
        }

    async def __call__(self, raw: str | bytes) -> bool:
        return await self.handle_frame(raw)

    async def handle_frame(self, raw: str | bytes) -> bool:
        """Process one frame. Returns True if a vessel row was written."""
        self.stats["received"] += 1
        received_at = self._clock()

        result = decode_frame(raw)
        if isinstance(result, DecodeError):
            if result.unsupported_kind:
                self.stats["discarded_kind"] += 1
                logger.debug("Skipping non-PositionReport message: %s", result.message_type)
            else:
                self.stats["discarded_decode"] += 1
                logger.warning("Discarding undecodable frame: %s", result.reason)
            return False

        error = validate_position(result.latitude, result.longitude)
        if error:
            self.stats["discarded_invalid"] += 1
            logger.warning("Invalid coordinates for MMSI %s: %s. Skipping.", result.mmsi, error)
            return False

        last_seen = normalize_report_time(result.report_time, received_at)
        try:
            stored = await asyncio.wait_for(
                asyncio.to_thread(self._write, result, last_seen), self.write_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Vessel write for MMSI %s exceeded %gs, dropping report",
                result.mmsi, self.write_timeout,
            )
            stored = False
        if stored:
            self.stats["stored"] += 1
            self.stats["last_stored_utc"] = received_at.isoformat()
        else:
            self.stats["write_failures"] += 1
        return stored

    def _write(self, report: PositionReport, last_seen: datetime) -> bool:
        db = self._db_factory()
        try:
            return self._writer(
                db,
                mmsi=report.mmsi,
                lon=report.longitude,
                lat=report.latitude,
                course=report.course,
                name=report.ship_name or "",
                last_seen=last_seen,
            )
        finally:
            db.close()
