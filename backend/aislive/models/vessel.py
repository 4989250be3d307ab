"""VesselState entity — latest known position of each vessel, one row per MMSI."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from geoalchemy2 import Geometry
from sqlalchemy import BigInteger, CheckConstraint, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, Session, mapped_column

from aislive.models.base import Base


class VesselState(Base):
    __tablename__ = "vessels"
    __table_args__ = (
        CheckConstraint("lat >= -90 AND lat <= 90", name="ck_vessels_lat_bounds"),
        CheckConstraint("lon >= -180 AND lon <= 180", name="ck_vessels_lon_bounds"),
        Index("ix_vessels_last_seen", "last_seen"),
    )

    mmsi: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    # PostGIS point (SRID 4326 - WGS84); spatial_index creates the GiST index
    geom: Mapped[bytes] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326, spatial_index=True),
        nullable=False,
    )
    # Coordinates stored separately for reads without PostGIS functions
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    # Course over ground in degrees; NULL when the feed reports "not available"
    course: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<VesselState(mmsi={self.mmsi}, lat={self.lat}, lon={self.lon}, last_seen={self.last_seen})>"

    @staticmethod
    def purge_old(db: Session, minutes: int = 60, now: datetime | None = None) -> int:
        """Delete vessels not seen for `minutes`. Returns count deleted.

        Note: Does NOT commit the transaction. The caller is responsible
        for calling db.commit() when ready.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=minutes)
        count = db.query(VesselState).filter(
            VesselState.last_seen < cutoff
        ).delete(synchronize_session=False)
        return count
