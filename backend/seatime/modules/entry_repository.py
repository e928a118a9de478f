"""Transactional store for sea-time entries, scheduled tasks, AIS checks and
the diagnostic log.

Repositories flush but never commit: the caller owns the transaction, so a
tracker transition or a confirmation either lands completely or not at all.
The one exception is ``TaskStore.claim``, which commits immediately because a
lease that is not visible to other workers is not a lease.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from seatime.config import settings
from seatime.errors import DataConflictError, EntryNotFoundError
from seatime.models.ais_check import AISCheck
from seatime.models.ais_debug_log import AISDebugLog
from seatime.models.base import (
    EntrySourceEnum,
    EntryStatusEnum,
    MovementEnum,
    ServiceTypeEnum,
    TaskTypeEnum,
)
from seatime.models.scheduled_task import ScheduledTask
from seatime.models.sea_time_entry import SeaTimeEntry
from seatime.models.vessel import Vessel

logger = logging.getLogger(__name__)


class EntryRepository:
    def __init__(self, db: Session):
        self.db = db

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, entry_id: int) -> SeaTimeEntry:
        entry = self.db.query(SeaTimeEntry).filter(SeaTimeEntry.id == entry_id).first()
        if entry is None:
            raise EntryNotFoundError(f"Sea time entry {entry_id} not found")
        return entry

    def get_open_entry(self, vessel_id: int) -> Optional[SeaTimeEntry]:
        return (
            self.db.query(SeaTimeEntry)
            .filter(SeaTimeEntry.vessel_id == vessel_id, SeaTimeEntry.end_time.is_(None))
            .order_by(SeaTimeEntry.start_time.desc())
            .first()
        )

    def find_overlapping(
        self,
        vessel_id: int,
        start_time: datetime,
        end_time: Optional[datetime],
        exclude_id: Optional[int] = None,
    ) -> list[SeaTimeEntry]:
        """Entries of the vessel whose [start, end) intersects [start_time, end_time).

        A NULL end (open entry, or an open candidate) extends to infinity.
        """
        q = self.db.query(SeaTimeEntry).filter(
            SeaTimeEntry.vessel_id == vessel_id,
            or_(SeaTimeEntry.end_time.is_(None), SeaTimeEntry.end_time > start_time),
        )
        if end_time is not None:
            q = q.filter(SeaTimeEntry.start_time < end_time)
        if exclude_id is not None:
            q = q.filter(SeaTimeEntry.id != exclude_id)
        return q.order_by(SeaTimeEntry.start_time).all()

    def list_pending(self, owner_id: Optional[str] = None) -> list[SeaTimeEntry]:
        q = self.db.query(SeaTimeEntry).filter(SeaTimeEntry.status == EntryStatusEnum.PENDING)
        if owner_id is not None:
            q = q.join(Vessel, Vessel.id == SeaTimeEntry.vessel_id).filter(Vessel.owner_id == owner_id)
        return q.order_by(SeaTimeEntry.start_time.desc()).all()

    def list_for_vessel(self, vessel_id: int) -> list[SeaTimeEntry]:
        return (
            self.db.query(SeaTimeEntry)
            .filter(SeaTimeEntry.vessel_id == vessel_id)
            .order_by(SeaTimeEntry.start_time.desc())
            .all()
        )

    def list_in_range(
        self,
        owner_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[EntryStatusEnum] = None,
    ) -> list[SeaTimeEntry]:
        """Entries whose start_time falls in [start, end], newest first."""
        q = self.db.query(SeaTimeEntry)
        if owner_id is not None:
            q = q.join(Vessel, Vessel.id == SeaTimeEntry.vessel_id).filter(Vessel.owner_id == owner_id)
        if start is not None:
            q = q.filter(SeaTimeEntry.start_time >= start)
        if end is not None:
            q = q.filter(SeaTimeEntry.start_time <= end)
        if status is not None:
            q = q.filter(SeaTimeEntry.status == status)
        return q.order_by(SeaTimeEntry.start_time.desc()).all()

    def confirmed_yard_days(self, owner_id: Optional[str], exclude_id: Optional[int] = None) -> int:
        """Yard days already confirmed for this owner, input to the 90-day cap."""
        q = self.db.query(SeaTimeEntry).filter(
            SeaTimeEntry.status == EntryStatusEnum.CONFIRMED,
            SeaTimeEntry.service_type == ServiceTypeEnum.YARD_SERVICE,
        )
        if owner_id is not None:
            q = q.join(Vessel, Vessel.id == SeaTimeEntry.vessel_id).filter(Vessel.owner_id == owner_id)
        if exclude_id is not None:
            q = q.filter(SeaTimeEntry.id != exclude_id)
        return sum(e.yard_days or 0 for e in q.all())

    # ── Writes (flush only) ──────────────────────────────────────────────────

    def create_entry(
        self,
        vessel_id: int,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        duration_hours: Optional[float] = None,
        status: EntryStatusEnum = EntryStatusEnum.PENDING,
        source: EntrySourceEnum = EntrySourceEnum.DETECTED,
        service_type: ServiceTypeEnum = ServiceTypeEnum.ACTUAL_SEA_SERVICE,
        start_latitude: Optional[float] = None,
        start_longitude: Optional[float] = None,
        end_latitude: Optional[float] = None,
        end_longitude: Optional[float] = None,
        notes: Optional[str] = None,
        **extra,
    ) -> SeaTimeEntry:
        """Insert a new entry after the open-entry and overlap checks.

        Raises DataConflictError naming the entry that already covers the range.
        """
        if end_time is None:
            existing = self.get_open_entry(vessel_id)
            if existing is not None:
                raise DataConflictError(
                    f"Vessel {vessel_id} already has open entry {existing.id}",
                    existing_entry_id=existing.id,
                )
        overlapping = self.find_overlapping(vessel_id, start_time, end_time)
        if overlapping:
            raise DataConflictError(
                f"Entry {start_time.isoformat()}–{end_time.isoformat() if end_time else 'open'} "
                f"overlaps entry {overlapping[0].id} for vessel {vessel_id}",
                existing_entry_id=overlapping[0].id,
            )

        entry = SeaTimeEntry(
            vessel_id=vessel_id,
            start_time=start_time,
            end_time=end_time,
            duration_hours=duration_hours,
            status=status,
            source=source,
            service_type=service_type,
            start_latitude=start_latitude,
            start_longitude=start_longitude,
            end_latitude=end_latitude,
            end_longitude=end_longitude,
            notes=notes,
            **extra,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def close_entry(
        self,
        entry: SeaTimeEntry,
        end_time: datetime,
        duration_hours: float,
        end_latitude: Optional[float] = None,
        end_longitude: Optional[float] = None,
        mca_compliant: Optional[bool] = None,
    ) -> SeaTimeEntry:
        entry.end_time = end_time
        entry.duration_hours = duration_hours
        entry.status = EntryStatusEnum.PENDING
        entry.end_latitude = end_latitude
        entry.end_longitude = end_longitude
        entry.mca_compliant = mca_compliant
        entry.needs_review = mca_compliant is False
        self.db.flush()
        return entry

    def confirm(self, entry: SeaTimeEntry, **fields) -> SeaTimeEntry:
        for name, value in fields.items():
            setattr(entry, name, value)
        entry.status = EntryStatusEnum.CONFIRMED
        self.db.flush()
        return entry

    def reject(self, entry: SeaTimeEntry, notes: Optional[str] = None) -> SeaTimeEntry:
        entry.status = EntryStatusEnum.REJECTED
        if notes:
            entry.notes = notes
        self.db.flush()
        return entry

    def delete(self, entry: SeaTimeEntry) -> None:
        self.db.delete(entry)
        self.db.flush()

    # ── AIS checks ───────────────────────────────────────────────────────────

    def latest_checks(self, vessel_id: int, limit: int = 2) -> list[AISCheck]:
        """Most recent checks first."""
        return (
            self.db.query(AISCheck)
            .filter(AISCheck.vessel_id == vessel_id)
            .order_by(AISCheck.check_time.desc(), AISCheck.id.desc())
            .limit(limit)
            .all()
        )

    def record_check(self, snapshot, movement: MovementEnum) -> AISCheck:
        check = AISCheck(
            vessel_id=snapshot.vessel_id,
            check_time=snapshot.timestamp,
            movement=movement,
            speed_knots=snapshot.speed_knots,
            latitude=snapshot.latitude,
            longitude=snapshot.longitude,
            api_source=snapshot.api_source,
        )
        self.db.add(check)
        self.db.flush()
        return check


class TaskStore:
    def __init__(self, db: Session):
        self.db = db

    def list_due(self, now: datetime) -> list[ScheduledTask]:
        return (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.task_type == TaskTypeEnum.AIS_CHECK,
                ScheduledTask.is_active.is_(True),
                ScheduledTask.next_run <= now,
            )
            .order_by(ScheduledTask.next_run, ScheduledTask.id)
            .all()
        )

    def get_for_vessel(self, vessel_id: int) -> Optional[ScheduledTask]:
        return (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.vessel_id == vessel_id,
                ScheduledTask.task_type == TaskTypeEnum.AIS_CHECK,
            )
            .first()
        )

    def claim(self, task: ScheduledTask, now: datetime, owner: Optional[str] = None) -> bool:
        """Compare-and-set lease on ``task`` as it was read by list_due.

        True only for the worker whose UPDATE matched the next_run it saw.

        Commits immediately so concurrent ticks (in this or another process)
        see the pushed-out next_run.
        """
        updated = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.id == task.id,
                ScheduledTask.next_run == task.next_run,
                ScheduledTask.is_active.is_(True),
            )
            .update(
                {
                    ScheduledTask.next_run: now + timedelta(seconds=settings.SCHEDULER_LEASE_SECONDS),
                    ScheduledTask.lease_owner: owner,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def mark_run(self, task_id: int, last_run: datetime, next_run: datetime) -> None:
        self.db.query(ScheduledTask).filter(ScheduledTask.id == task_id).update(
            {
                ScheduledTask.last_run: last_run,
                ScheduledTask.next_run: next_run,
                ScheduledTask.consecutive_failures: 0,
                ScheduledTask.last_error: None,
                ScheduledTask.lease_owner: None,
            },
            synchronize_session=False,
        )
        self.db.commit()

    def release_failed(self, task_id: int, next_run: datetime, error: str) -> None:
        """Give the lease back without advancing the schedule."""
        self.db.query(ScheduledTask).filter(ScheduledTask.id == task_id).update(
            {
                ScheduledTask.next_run: next_run,
                ScheduledTask.consecutive_failures: ScheduledTask.consecutive_failures + 1,
                ScheduledTask.last_error: error[:2000],
                ScheduledTask.lease_owner: None,
            },
            synchronize_session=False,
        )
        self.db.commit()


class DiagnosticLogSink:
    """Append-only writer for ais_debug_logs."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, vessel_id: int, mmsi: str, call) -> AISDebugLog:
        log = AISDebugLog(
            vessel_id=vessel_id,
            mmsi=mmsi,
            api_url=call.api_url,
            request_time=call.request_time,
            response_status=call.response_status,
            response_body=call.response_body,
            authentication_status=call.authentication_status,
            error_message=call.error_message,
            api_source=call.api_source,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def list_for_vessel(self, vessel_id: int, limit: int = 50) -> list[AISDebugLog]:
        return (
            self.db.query(AISDebugLog)
            .filter(AISDebugLog.vessel_id == vessel_id)
            .order_by(AISDebugLog.request_time.desc(), AISDebugLog.id.desc())
            .limit(limit)
            .all()
        )
