"""Sea-time state machine.

``decide`` is pure: given the classified movement, whether the vessel has an
open entry, and whether the fix is stale, it returns the effect to apply.
``apply`` is the only code path that mutates entries on behalf of the tracker.

    prior           movement     effect
    no_open_entry   moving       open
    open_tracking   moving       extend   (no mutation)
    open_tracking   stationary   close    (-> pending)
    any             unknown      none
    no_open_entry   stationary   none
    any (stale)     any          none
"""
from __future__ import annotations

import enum
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from seatime.errors import DataConflictError
from seatime.models.base import EntrySourceEnum, EntryStatusEnum, MovementEnum
from seatime.models.sea_time_entry import SeaTimeEntry
from seatime.modules.accrual_engine import duration_hours, is_mca_compliant
from seatime.modules.entry_repository import EntryRepository

logger = logging.getLogger(__name__)


class TrackerState(str, enum.Enum):
    NO_OPEN_ENTRY = "no_open_entry"
    OPEN_TRACKING = "open_tracking"


class Effect(str, enum.Enum):
    NONE = "none"
    OPEN = "open"
    EXTEND = "extend"
    CLOSE = "close"


def state_for(open_entry: Optional[SeaTimeEntry]) -> TrackerState:
    return TrackerState.OPEN_TRACKING if open_entry is not None else TrackerState.NO_OPEN_ENTRY


def decide(movement: MovementEnum | str, prior_state: TrackerState | str, stale: bool = False) -> Effect:
    movement = MovementEnum(movement)
    prior_state = TrackerState(prior_state)
    if stale or movement == MovementEnum.UNKNOWN:
        return Effect.NONE
    if prior_state == TrackerState.NO_OPEN_ENTRY:
        return Effect.OPEN if movement == MovementEnum.MOVING else Effect.NONE
    return Effect.EXTEND if movement == MovementEnum.MOVING else Effect.CLOSE


def apply(
    repo: EntryRepository,
    effect: Effect,
    vessel,
    snapshot,
    open_entry: Optional[SeaTimeEntry],
) -> Optional[SeaTimeEntry]:
    """Carry out ``effect`` against the store. Flushes; the caller commits.

    Returns the entry that was opened, extended or closed, or None. An open
    that loses a race with a concurrent insert rolls the session back and
    raises DataConflictError.
    """
    if effect == Effect.NONE:
        return None

    if effect == Effect.EXTEND:
        # The open entry is implicitly extended until it closes
        return open_entry

    if effect == Effect.OPEN:
        existing = repo.get_open_entry(vessel.id)
        if existing is not None:
            conflict = DataConflictError(
                f"Vessel {vessel.id} already has open entry {existing.id}",
                existing_entry_id=existing.id,
            )
            logger.warning("Not opening a second entry: %s", conflict)
            return existing
        try:
            entry = repo.create_entry(
                vessel_id=vessel.id,
                start_time=snapshot.timestamp,
                status=EntryStatusEnum.PENDING,
                source=EntrySourceEnum.DETECTED,
                start_latitude=snapshot.latitude,
                start_longitude=snapshot.longitude,
            )
        except DataConflictError as exc:
            logger.warning("Not opening entry for vessel %s: %s", vessel.id, exc)
            return None
        except IntegrityError:
            # Another check opened an entry between our lookup and the insert
            repo.db.rollback()
            winner = repo.get_open_entry(vessel.id)
            raise DataConflictError(
                f"Vessel {vessel.id} already has an open entry",
                existing_entry_id=winner.id if winner is not None else None,
            )
        logger.info("Opened sea time entry %s for vessel %s at %s", entry.id, vessel.id, entry.start_time)
        return entry

    # Effect.CLOSE
    if open_entry is None:
        return None
    if snapshot.timestamp <= open_entry.start_time:
        logger.warning(
            "Ignoring close of entry %s: fix at %s is not after start %s",
            open_entry.id, snapshot.timestamp, open_entry.start_time,
        )
        return None
    duration = duration_hours(open_entry.start_time, snapshot.timestamp)
    compliant = is_mca_compliant(duration)
    repo.close_entry(
        open_entry,
        end_time=snapshot.timestamp,
        duration_hours=duration,
        end_latitude=snapshot.latitude,
        end_longitude=snapshot.longitude,
        mca_compliant=compliant,
    )
    logger.info(
        "Closed sea time entry %s for vessel %s: %.2f h (mca_compliant=%s)",
        open_entry.id, vessel.id, duration, compliant,
    )
    return open_entry
