"""Import all models to register them with SQLAlchemy metadata."""
from aislive.models.base import Base
from aislive.models.vessel import VesselState

__all__ = [
    "Base",
    "VesselState",
]
