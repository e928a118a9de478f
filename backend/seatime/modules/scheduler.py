"""Periodic AIS polling.

One tick every SCHEDULER_TICK_SECONDS:
  1. list due ``ais_check`` tasks (one per vessel)
  2. lease each with a compare-and-set on next_run
  3. run the vessel check for every claimed task on a bounded thread pool,
     one session per worker
  4. on success advance next_run by the task interval; on failure give the
     lease back with next_run unchanged so the task is due again next tick

A worker that dies mid-task leaves next_run at the lease expiry, after which
any tick (in any process) picks the task up again.
"""
from __future__ import annotations

import logging
import os
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from seatime.config import settings
from seatime.database import SessionLocal
from seatime.errors import AuthenticationError, LeaseHeldError, ProviderError, UnknownVesselError
from seatime.models.base import MovementEnum
from seatime.models.vessel import Vessel
from seatime.modules.entry_repository import DiagnosticLogSink, EntryRepository, TaskStore
from seatime.modules.movement_classifier import classify_snapshot, is_stale_fix
from seatime.modules.position_provider import MyShipTrackingProvider
from seatime.modules.sea_time_tracker import Effect, apply, decide, state_for

logger = logging.getLogger(__name__)

_WORKER_ID = f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class DueTask:
    """Detached view of a due task, as it was when the tick listed it."""

    id: int
    vessel_id: int
    next_run: datetime
    interval_hours: float


@dataclass
class TickResult:
    due: int = 0
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: dict[int, str] = field(default_factory=dict)


@dataclass
class CheckResult:
    vessel_id: int
    movement: MovementEnum
    effect: Effect
    stale: bool = False
    entry_id: Optional[int] = None


def run_vessel_check(
    db: Session,
    vessel: Vessel,
    provider,
    now: Optional[datetime] = None,
) -> CheckResult:
    """Poll one vessel and advance its sea-time state.

    The diagnostic row is committed whatever happens. Nothing else is written
    unless the fetch succeeded. Raises the provider error on failure.
    """
    outcome = provider.fetch_position(vessel, now=now)
    DiagnosticLogSink(db).append(vessel.id, vessel.mmsi, outcome.call)
    db.commit()

    if not outcome.ok:
        error = outcome.error or ProviderError(f"No position returned for MMSI {vessel.mmsi}")
        if isinstance(error, AuthenticationError):
            logger.error("Position provider authentication failed for vessel %s: %s", vessel.id, error)
        else:
            logger.warning("Position fetch failed for vessel %s (%s): %s", vessel.id, error.kind, error)
        raise error

    snapshot = outcome.snapshot
    repo = EntryRepository(db)
    try:
        movement = classify_snapshot(snapshot, vessel.propulsion_type)
        previous = repo.latest_checks(vessel.id, limit=1)
        stale = bool(previous) and is_stale_fix(
            previous[0].latitude, previous[0].longitude, snapshot.latitude, snapshot.longitude,
        )
        open_entry = repo.get_open_entry(vessel.id)
        effect = decide(movement, state_for(open_entry), stale=stale)
        if stale:
            logger.info(
                "Vessel %s reported the same position as the previous check; ignoring %s",
                vessel.id, movement.value,
            )

        repo.record_check(snapshot, movement)
        entry = apply(repo, effect, vessel, snapshot, open_entry)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Vessel %s: %s at %.1f kn -> %s",
        vessel.id, movement.value, snapshot.speed_knots if snapshot.speed_knots is not None else float("nan"),
        effect.value,
    )
    return CheckResult(
        vessel_id=vessel.id,
        movement=movement,
        effect=effect,
        stale=stale,
        entry_id=entry.id if entry is not None else None,
    )


def run_manual_check(
    db: Session,
    vessel: Vessel,
    provider,
    now: Optional[datetime] = None,
) -> CheckResult:
    """Manual check now, run under the vessel's task lease.

    Raises LeaseHeldError while a scheduler worker holds the lease. The task
    keeps its next_run; a vessel without an active task is checked directly.
    """
    now = now or datetime.utcnow()
    store = TaskStore(db)
    task = store.get_for_vessel(vessel.id)
    if task is None or not task.is_active:
        return run_vessel_check(db, vessel, provider, now=now)

    due = DueTask(task.id, task.vessel_id, task.next_run, task.interval_hours)
    holder = task.lease_owner
    if (holder is not None and due.next_run > now) or not store.claim(due, now, owner=f"{_WORKER_ID}:manual"):
        raise LeaseHeldError(
            f"Vessel {vessel.id} is being checked by {holder or 'another worker'}; try again shortly"
        )

    try:
        result = run_vessel_check(db, vessel, provider, now=now)
    except Exception as exc:
        db.rollback()
        store.release_failed(due.id, due.next_run, f"{type(exc).__name__}: {exc}")
        raise
    store.mark_run(due.id, now, due.next_run)
    return result


def _run_task(
    due: DueTask,
    now: datetime,
    provider,
    session_factory: Callable[[], Session],
) -> Optional[str]:
    """Run one claimed task in its own session. Returns an error string or None."""
    db = session_factory()
    try:
        try:
            vessel = db.query(Vessel).filter(Vessel.id == due.vessel_id).first()
            if vessel is None:
                raise UnknownVesselError(f"Vessel {due.vessel_id} not found")
            run_vessel_check(db, vessel, provider, now=now)
        except Exception as exc:
            db.rollback()
            error = f"{type(exc).__name__}: {exc}"
            if not isinstance(exc, ProviderError):
                logger.exception("Task %s for vessel %s failed", due.id, due.vessel_id)
            TaskStore(db).release_failed(due.id, due.next_run, error)
            return error
        TaskStore(db).mark_run(due.id, now, now + timedelta(hours=due.interval_hours))
        return None
    finally:
        db.close()


def tick(
    now: Optional[datetime] = None,
    provider=None,
    session_factory: Callable[[], Session] = SessionLocal,
    max_workers: Optional[int] = None,
) -> TickResult:
    now = now or datetime.utcnow()
    provider = provider or MyShipTrackingProvider()
    result = TickResult()

    db = session_factory()
    try:
        store = TaskStore(db)
        tasks = store.list_due(now)
        result.due = len(tasks)

        # Snapshot before claiming: claim() commits, which expires ORM state
        seen_vessels: set[int] = set()
        pending: list[DueTask] = []
        for t in tasks:
            if t.vessel_id in seen_vessels:
                result.skipped += 1
                continue
            seen_vessels.add(t.vessel_id)
            pending.append(DueTask(t.id, t.vessel_id, t.next_run, t.interval_hours))

        claimed: list[DueTask] = []
        for due in pending:
            if store.claim(due, now, owner=_WORKER_ID):
                claimed.append(due)
            else:
                result.skipped += 1
        result.claimed = len(claimed)
    finally:
        db.close()

    if not claimed:
        return result

    with ThreadPoolExecutor(max_workers=max_workers or settings.SCHEDULER_MAX_WORKERS) as pool:
        futures = {pool.submit(_run_task, due, now, provider, session_factory): due for due in claimed}
        for future, due in futures.items():
            try:
                error = future.result()
            except Exception as exc:
                # Only reachable if releasing the lease itself failed; lease expiry recovers
                logger.exception("Task %s could not be released", due.id)
                error = f"{type(exc).__name__}: {exc}"
            if error is None:
                result.succeeded += 1
            else:
                result.failed += 1
                result.errors[due.id] = error

    logger.info(
        "Tick %s: %d due, %d claimed, %d succeeded, %d failed, %d skipped",
        now.isoformat(timespec="seconds"), result.due, result.claimed,
        result.succeeded, result.failed, result.skipped,
    )
    return result


def run_forever(stop_event: Optional[threading.Event] = None, provider=None) -> None:
    """Tick immediately, then every SCHEDULER_TICK_SECONDS until stop_event is set."""
    stop_event = stop_event or threading.Event()
    provider = provider or MyShipTrackingProvider()
    logger.info(
        "Scheduler started: tick every %ds, %d workers, lease %ds",
        settings.SCHEDULER_TICK_SECONDS, settings.SCHEDULER_MAX_WORKERS, settings.SCHEDULER_LEASE_SECONDS,
    )
    while not stop_event.is_set():
        started = time.monotonic()
        try:
            tick(provider=provider)
        except Exception:
            logger.exception("Scheduler tick failed")
        # Ticks run back to back, never overlapping
        elapsed = time.monotonic() - started
        stop_event.wait(max(0.0, settings.SCHEDULER_TICK_SECONDS - elapsed))
    logger.info("Scheduler stopped")
