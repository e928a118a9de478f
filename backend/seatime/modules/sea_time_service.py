"""User-facing sea-time operations: review, confirmation, manual logbook
entries and entries built from recorded AIS checks.

Every mutating operation is one transaction. Confirmation is fail-closed:
if the accrual engine (or anything else) raises, the session is rolled back
and the entry stays exactly as it was.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from seatime.errors import DataConflictError, InvalidStateError, UnknownVesselError
from seatime.models.base import (
    DepartmentEnum,
    EntrySourceEnum,
    EntryStatusEnum,
    ServiceTypeEnum,
)
from seatime.models.sea_time_entry import SeaTimeEntry
from seatime.models.vessel import Vessel
from seatime.modules.accrual_engine import (
    AnchorageContext,
    EntryAccrual,
    accrue_entry,
    duration_hours,
    is_mca_compliant,
)
from seatime.modules.entry_repository import DiagnosticLogSink, EntryRepository, TaskStore
from seatime.modules.normalize import to_utc_naive

logger = logging.getLogger(__name__)


def get_vessel(db: Session, vessel_id: int) -> Vessel:
    vessel = db.query(Vessel).filter(Vessel.id == vessel_id).first()
    if vessel is None:
        raise UnknownVesselError(f"Vessel {vessel_id} not found")
    return vessel


# ── Reads ────────────────────────────────────────────────────────────────────

def list_pending(db: Session, owner_id: Optional[str] = None) -> list[SeaTimeEntry]:
    """Entries awaiting review, including one still open."""
    return EntryRepository(db).list_pending(owner_id)


def list_for_vessel(db: Session, vessel_id: int) -> list[SeaTimeEntry]:
    get_vessel(db, vessel_id)
    return EntryRepository(db).list_for_vessel(vessel_id)


def logbook(
    db: Session,
    owner_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[EntryStatusEnum] = None,
) -> list[SeaTimeEntry]:
    return EntryRepository(db).list_in_range(
        owner_id=owner_id,
        start=to_utc_naive(start) if start else None,
        end=to_utc_naive(end) if end else None,
        status=status,
    )


def movement_status(db: Session, vessel_id: int) -> dict[str, Any]:
    """Latest classified fix, open entry and task state for one vessel."""
    vessel = get_vessel(db, vessel_id)
    repo = EntryRepository(db)
    checks = repo.latest_checks(vessel_id, limit=1)
    latest = checks[0] if checks else None
    open_entry = repo.get_open_entry(vessel_id)
    task = TaskStore(db).get_for_vessel(vessel_id)
    return {
        "vessel_id": vessel.id,
        "mmsi": vessel.mmsi,
        "is_active": vessel.is_active,
        "movement": latest.movement if latest else None,
        "speed_knots": latest.speed_knots if latest else None,
        "latitude": latest.latitude if latest else None,
        "longitude": latest.longitude if latest else None,
        "last_check_time": latest.check_time if latest else None,
        "open_entry_id": open_entry.id if open_entry else None,
        "open_entry_start": open_entry.start_time if open_entry else None,
        "task_active": bool(task and task.is_active),
        "last_run": task.last_run if task else None,
        "next_run": task.next_run if task else None,
        "consecutive_failures": task.consecutive_failures if task else 0,
        "last_error": task.last_error if task else None,
    }


def debug_logs(db: Session, vessel_id: int, limit: int = 50):
    get_vessel(db, vessel_id)
    return DiagnosticLogSink(db).list_for_vessel(vessel_id, limit=limit)


# ── Confirmation ─────────────────────────────────────────────────────────────

def _accrual_fields(accrual: EntryAccrual) -> dict[str, Any]:
    return {
        "duration_hours": accrual.duration_hours,
        "sea_days": accrual.sea_days,
        "watchkeeping_hours": accrual.watchkeeping_hours,
        "watchkeeping_days": accrual.watchkeeping_days,
        "additional_watchkeeping_hours": accrual.additional_watchkeeping_hours,
        "additional_watchkeeping_days": accrual.additional_watchkeeping_days,
        "yard_days": accrual.yard_days,
        "mca_compliant": accrual.mca_compliant,
        "needs_review": accrual.needs_review,
        "requires_documentation": accrual.requires_documentation,
    }


def _close_open_entry(repo: EntryRepository, entry: SeaTimeEntry, now: datetime) -> None:
    if now <= entry.start_time:
        raise InvalidStateError(f"Entry {entry.id} cannot be closed before it started")
    duration = duration_hours(entry.start_time, now)
    repo.close_entry(entry, end_time=now, duration_hours=duration, mca_compliant=is_mca_compliant(duration))
    logger.info("Closed open entry %s at confirmation time (%.2f h)", entry.id, duration)


def confirm_entry(
    db: Session,
    entry_id: int,
    department: DepartmentEnum | str,
    service_type: ServiceTypeEnum | str = ServiceTypeEnum.ACTUAL_SEA_SERVICE,
    notes: Optional[str] = None,
    watchkeeping_hours: Optional[float] = None,
    additional_watchkeeping_hours: Optional[float] = None,
    is_stationary: Optional[bool] = None,
    anchorage: Optional[AnchorageContext] = None,
    routine_maintenance: bool = False,
    now: Optional[datetime] = None,
) -> SeaTimeEntry:
    """Confirm a pending entry and record its accrual.

    Raises EntryNotFoundError, InvalidStateError (terminal entry, or an
    accrual combination the rules forbid) or ValueError (unknown enum value).
    """
    repo = EntryRepository(db)
    try:
        entry = repo.get(entry_id)
        if entry.is_terminal:
            raise InvalidStateError(f"Entry {entry_id} is already {EntryStatusEnum(entry.status).value}")
        department = DepartmentEnum(department)
        service_type = ServiceTypeEnum(service_type)
        if entry.is_open:
            _close_open_entry(repo, entry, now or datetime.utcnow())
        if is_stationary is not None:
            entry.is_stationary = is_stationary

        accrual = accrue_entry(
            entry,
            entry.vessel,
            department=department,
            service_type=service_type,
            watchkeeping_hours=watchkeeping_hours,
            additional_watchkeeping_hours=additional_watchkeeping_hours,
            anchorage=anchorage,
            routine_maintenance=routine_maintenance,
            prior_yard_days=repo.confirmed_yard_days(entry.vessel.owner_id, exclude_id=entry.id),
        )
        fields = _accrual_fields(accrual)
        if notes is not None:
            fields["notes"] = notes
        repo.confirm(entry, department=department, service_type=service_type, **fields)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(entry)
    logger.info(
        "Confirmed entry %s as %s/%s: %d sea day(s), %d watchkeeping day(s)",
        entry.id, department.value, service_type.value, accrual.sea_days, accrual.watchkeeping_days,
    )
    for reason in accrual.reasons:
        logger.info("Entry %s: %s", entry.id, reason)
    return entry


def reject_entry(
    db: Session,
    entry_id: int,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SeaTimeEntry:
    repo = EntryRepository(db)
    try:
        entry = repo.get(entry_id)
        if entry.is_terminal:
            raise InvalidStateError(f"Entry {entry_id} is already {EntryStatusEnum(entry.status).value}")
        if entry.is_open:
            # A rejected entry must not stay open: it would block every later one
            _close_open_entry(repo, entry, now or datetime.utcnow())
        repo.reject(entry, notes)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    logger.info("Rejected entry %s", entry.id)
    return entry


def delete_entry(db: Session, entry_id: int) -> None:
    repo = EntryRepository(db)
    entry = repo.get(entry_id)
    repo.delete(entry)
    db.commit()
    logger.info("Deleted entry %s", entry_id)


# ── Creation outside the tracker ─────────────────────────────────────────────

def create_manual_entry(
    db: Session,
    vessel_id: int,
    start_time: datetime,
    end_time: datetime,
    department: DepartmentEnum | str,
    service_type: ServiceTypeEnum | str = ServiceTypeEnum.ACTUAL_SEA_SERVICE,
    notes: Optional[str] = None,
    watchkeeping_hours: Optional[float] = None,
    additional_watchkeeping_hours: Optional[float] = None,
    is_stationary: bool = False,
    anchorage: Optional[AnchorageContext] = None,
    routine_maintenance: bool = False,
    start_latitude: Optional[float] = None,
    start_longitude: Optional[float] = None,
    end_latitude: Optional[float] = None,
    end_longitude: Optional[float] = None,
) -> SeaTimeEntry:
    """Log a period by hand. Created confirmed, with its accrual.

    Raises ValueError when end_time is not after start_time and
    DataConflictError when the period overlaps an existing entry.
    """
    start_time = to_utc_naive(start_time)
    end_time = to_utc_naive(end_time)
    if end_time <= start_time:
        raise ValueError("end_time must be after start_time")
    department = DepartmentEnum(department)
    service_type = ServiceTypeEnum(service_type)

    repo = EntryRepository(db)
    try:
        vessel = get_vessel(db, vessel_id)
        entry = repo.create_entry(
            vessel_id=vessel.id,
            start_time=start_time,
            end_time=end_time,
            duration_hours=duration_hours(start_time, end_time),
            status=EntryStatusEnum.PENDING,
            source=EntrySourceEnum.MANUAL,
            service_type=service_type,
            start_latitude=start_latitude,
            start_longitude=start_longitude,
            end_latitude=end_latitude,
            end_longitude=end_longitude,
            is_stationary=is_stationary,
        )
        accrual = accrue_entry(
            entry,
            vessel,
            department=department,
            service_type=service_type,
            watchkeeping_hours=watchkeeping_hours,
            additional_watchkeeping_hours=additional_watchkeeping_hours,
            anchorage=anchorage,
            routine_maintenance=routine_maintenance,
            prior_yard_days=repo.confirmed_yard_days(vessel.owner_id, exclude_id=entry.id),
        )
        repo.confirm(
            entry, department=department, service_type=service_type, notes=notes,
            **_accrual_fields(accrual),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(entry)
    logger.info("Created manual entry %s for vessel %s (%.2f h)", entry.id, vessel_id, entry.duration_hours)
    return entry


def create_entry_from_positions(db: Session, vessel_id: int) -> SeaTimeEntry:
    """Build a pending entry spanning the two most recent AIS checks.

    Raises ValueError with fewer than two checks or missing coordinates, and
    DataConflictError when both checks report the same position (a stale
    provider fix, not movement) or the span overlaps an existing entry.
    """
    vessel = get_vessel(db, vessel_id)
    repo = EntryRepository(db)
    checks = repo.latest_checks(vessel.id, limit=2)
    if len(checks) < 2:
        raise ValueError(f"Vessel {vessel_id} needs at least two AIS checks, has {len(checks)}")
    newer, older = checks[0], checks[1]
    if None in (older.latitude, older.longitude, newer.latitude, newer.longitude):
        raise ValueError("Both AIS checks need coordinates")
    if older.latitude == newer.latitude and older.longitude == newer.longitude:
        raise DataConflictError(
            f"Last two AIS checks for vessel {vessel_id} report identical coordinates "
            f"({newer.latitude}, {newer.longitude}); the vessel has not moved"
        )
    if newer.check_time <= older.check_time:
        raise ValueError("AIS checks share a timestamp")

    duration = duration_hours(older.check_time, newer.check_time)
    compliant = is_mca_compliant(duration)
    try:
        entry = repo.create_entry(
            vessel_id=vessel.id,
            start_time=older.check_time,
            end_time=newer.check_time,
            duration_hours=duration,
            status=EntryStatusEnum.PENDING,
            source=EntrySourceEnum.POSITIONS,
            start_latitude=older.latitude,
            start_longitude=older.longitude,
            end_latitude=newer.latitude,
            end_longitude=newer.longitude,
            mca_compliant=compliant,
            needs_review=not compliant,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    logger.info("Created entry %s from AIS checks for vessel %s (%.2f h)", entry.id, vessel_id, duration)
    return entry
