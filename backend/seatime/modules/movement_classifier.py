"""Movement classification for a single position fix.

  moving      — speed >= MOVING_THRESHOLD_KNOTS
  stationary  — speed known and below the threshold
  unknown     — speed missing/NaN/inf; never drives a transition

Propulsion type is explicit vessel data and is never inferred from AIS.
Under-way sail vessels classify with the same speed rule; the accrual engine
is where wind power changes the outcome (no 4 h engine-running minimum).
"""
from __future__ import annotations

import math
from typing import Optional

from seatime.config import settings
from seatime.models.base import MovementEnum, PropulsionTypeEnum


def classify(
    speed_knots: Optional[float],
    propulsion_type: PropulsionTypeEnum | str,
    threshold: float | None = None,
) -> MovementEnum:
    """Map (speed, propulsion type) to a movement class. Pure."""
    if speed_knots is None or math.isnan(speed_knots) or math.isinf(speed_knots):
        return MovementEnum.UNKNOWN
    if threshold is None:
        threshold = settings.MOVING_THRESHOLD_KNOTS
    PropulsionTypeEnum(propulsion_type)  # ValueError on an unknown type
    return MovementEnum.MOVING if speed_knots >= threshold else MovementEnum.STATIONARY


def classify_snapshot(snapshot, propulsion_type: PropulsionTypeEnum | str) -> MovementEnum:
    return classify(snapshot.speed_knots, propulsion_type)


def is_stale_fix(
    previous_lat: Optional[float],
    previous_lon: Optional[float],
    current_lat: Optional[float],
    current_lon: Optional[float],
) -> bool:
    """True when two consecutive fixes report exactly the same coordinates.

    Providers re-serve a cached fix with a fresh timestamp when a vessel's
    transponder goes quiet; a computed speed from such a fix is not evidence
    of anything. No previous fix (or no coordinates) is not stale.
    """
    if None in (previous_lat, previous_lon, current_lat, current_lon):
        return False
    return previous_lat == current_lat and previous_lon == current_lon
