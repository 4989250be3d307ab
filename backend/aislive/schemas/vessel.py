"""Pydantic schemas for vessel positions — used by FastAPI for response typing."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class VesselPosition(BaseModel):
    mmsi: int
    lat: float
    lon: float
    # None when the vessel reported no course; never coerced to 0
    course: Optional[float] = None

    model_config = {"from_attributes": True}
