"""Import all models to register them with SQLAlchemy metadata."""
from seatime.models.base import Base
from seatime.models.vessel import Vessel
from seatime.models.sea_time_entry import SeaTimeEntry
from seatime.models.scheduled_task import ScheduledTask
from seatime.models.ais_check import AISCheck
from seatime.models.ais_debug_log import AISDebugLog

__all__ = [
    "Base",
    "Vessel",
    "SeaTimeEntry",
    "ScheduledTask",
    "AISCheck",
    "AISDebugLog",
]
