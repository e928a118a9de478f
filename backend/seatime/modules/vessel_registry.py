"""Which vessel each owner is tracking, and the polling task that goes with it.

An owner tracks at most one vessel at a time. Activation deactivates the
owner's other vessels and removes their tasks in the same transaction, so the
rule holds without any process-wide "current vessel" state.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from seatime.config import settings
from seatime.models.base import TaskTypeEnum
from seatime.models.scheduled_task import ScheduledTask
from seatime.models.vessel import Vessel
from seatime.modules.normalize import is_valid_mmsi
from seatime.modules.sea_time_service import get_vessel

logger = logging.getLogger(__name__)


def _delete_tasks(db: Session, vessel_id: int) -> int:
    return (
        db.query(ScheduledTask)
        .filter(ScheduledTask.vessel_id == vessel_id, ScheduledTask.task_type == TaskTypeEnum.AIS_CHECK)
        .delete(synchronize_session=False)
    )


def _ensure_task(db: Session, vessel: Vessel, now: datetime) -> tuple[ScheduledTask, str]:
    task = (
        db.query(ScheduledTask)
        .filter(ScheduledTask.vessel_id == vessel.id, ScheduledTask.task_type == TaskTypeEnum.AIS_CHECK)
        .first()
    )
    if task is None:
        task = ScheduledTask(
            vessel_id=vessel.id,
            task_type=TaskTypeEnum.AIS_CHECK,
            interval_hours=settings.DEFAULT_CHECK_INTERVAL_HOURS,
            next_run=now,
            is_active=True,
            consecutive_failures=0,
        )
        db.add(task)
        return task, "created"
    if not task.is_active:
        task.is_active = True
        task.next_run = now
        task.consecutive_failures = 0
        task.last_error = None
        return task, "reactivated"
    return task, "already_active"


def activate_vessel(db: Session, vessel_id: int, now: Optional[datetime] = None) -> Vessel:
    now = now or datetime.utcnow()
    try:
        vessel = get_vessel(db, vessel_id)
        if not is_valid_mmsi(vessel.mmsi):
            raise ValueError(f"Vessel {vessel.id} has no valid 9-digit MMSI to poll: {vessel.mmsi!r}")
        others = (
            db.query(Vessel)
            .filter(Vessel.owner_id == vessel.owner_id, Vessel.id != vessel.id, Vessel.is_active.is_(True))
            .all()
        )
        for other in others:
            other.is_active = False
            _delete_tasks(db, other.id)
            logger.info("Deactivated vessel %s (%s) for owner %s", other.id, other.mmsi, other.owner_id)
        vessel.is_active = True
        _, outcome = _ensure_task(db, vessel, now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(vessel)
    logger.info("Activated vessel %s (%s), ais_check task %s", vessel.id, vessel.mmsi, outcome)
    return vessel


def deactivate_vessel(db: Session, vessel_id: int) -> Vessel:
    vessel = get_vessel(db, vessel_id)
    vessel.is_active = False
    removed = _delete_tasks(db, vessel.id)
    db.commit()
    db.refresh(vessel)
    logger.info("Deactivated vessel %s (%s), removed %d task(s)", vessel.id, vessel.mmsi, removed)
    return vessel


def delete_vessel(db: Session, vessel_id: int) -> None:
    """Delete a vessel; its entries, checks, tasks and logs go with it."""
    vessel = get_vessel(db, vessel_id)
    db.delete(vessel)
    db.commit()
    logger.info("Deleted vessel %s", vessel_id)


def verify_vessel_tasks(db: Session, now: Optional[datetime] = None) -> dict:
    """Make sure every active vessel has an active ais_check task.

    Returns counts plus per-vessel outcomes (created, reactivated, already_active).
    """
    now = now or datetime.utcnow()
    results = []
    counts = {"created": 0, "reactivated": 0, "already_active": 0}
    for vessel in db.query(Vessel).filter(Vessel.is_active.is_(True)).order_by(Vessel.id).all():
        _, outcome = _ensure_task(db, vessel, now)
        counts[outcome] += 1
        results.append({"vessel_id": vessel.id, "mmsi": vessel.mmsi, "outcome": outcome})
    db.commit()
    logger.info(
        "Verified vessel tasks: %d created, %d reactivated, %d already active",
        counts["created"], counts["reactivated"], counts["already_active"],
    )
    return {"checked": len(results), **counts, "vessels": results}
