from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from seatime.config import settings
from seatime.database import get_db
from seatime.errors import ProviderError
from seatime.models.base import EntryStatusEnum
from seatime.modules import reporting, sea_time_service, vessel_registry
from seatime.modules.accrual_engine import AnchorageContext
from seatime.modules.position_provider import MyShipTrackingProvider
from seatime.modules.scheduler import run_manual_check
from seatime.schemas.error import ErrorResponse
from seatime.schemas.sea_time import (
    AnchorageContextIn,
    ConfirmEntryRequest,
    ManualEntryRequest,
    RejectEntryRequest,
    SeaTimeEntryRead,
    SummaryRead,
)
from seatime.schemas.vessel import CheckResultRead, DebugLogRead, MovementStatusRead, VesselRead

logger = logging.getLogger(__name__)

router = APIRouter()

_CONFLICT_RESPONSES = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def get_provider() -> MyShipTrackingProvider:
    return MyShipTrackingProvider()


def _anchorage(body: Optional[AnchorageContextIn]) -> Optional[AnchorageContext]:
    if body is None:
        return None
    return AnchorageContext(**body.model_dump())


# ---------------------------------------------------------------------------
# Sea time review
# ---------------------------------------------------------------------------

@router.get("/sea-time/pending", response_model=list[SeaTimeEntryRead], tags=["sea-time"])
def get_pending_entries(owner_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Entries awaiting confirmation, newest first. Includes an entry still open."""
    return sea_time_service.list_pending(db, owner_id=owner_id)


@router.get("/vessels/{vessel_id}/sea-time", response_model=list[SeaTimeEntryRead], tags=["sea-time"])
def get_vessel_entries(vessel_id: int, db: Session = Depends(get_db)):
    return sea_time_service.list_for_vessel(db, vessel_id)


@router.put("/sea-time/{entry_id}/confirm", response_model=SeaTimeEntryRead, responses=_CONFLICT_RESPONSES, tags=["sea-time"])
def confirm_entry(entry_id: int, body: ConfirmEntryRequest, db: Session = Depends(get_db)):
    return sea_time_service.confirm_entry(
        db,
        entry_id,
        department=body.department,
        service_type=body.service_type,
        notes=body.notes,
        watchkeeping_hours=body.watchkeeping_hours,
        additional_watchkeeping_hours=body.additional_watchkeeping_hours,
        is_stationary=body.is_stationary,
        anchorage=_anchorage(body.anchorage),
        routine_maintenance=body.routine_maintenance,
    )


@router.put("/sea-time/{entry_id}/reject", response_model=SeaTimeEntryRead, responses=_CONFLICT_RESPONSES, tags=["sea-time"])
def reject_entry(entry_id: int, body: Optional[RejectEntryRequest] = None, db: Session = Depends(get_db)):
    return sea_time_service.reject_entry(db, entry_id, notes=body.notes if body else None)


@router.delete("/sea-time/{entry_id}", tags=["sea-time"])
def delete_entry(entry_id: int, db: Session = Depends(get_db)):
    sea_time_service.delete_entry(db, entry_id)
    return {"status": "ok", "deleted": entry_id}


@router.post("/vessels/{vessel_id}/sea-time/from-positions", response_model=SeaTimeEntryRead, responses=_CONFLICT_RESPONSES, tags=["sea-time"])
def create_entry_from_positions(vessel_id: int, db: Session = Depends(get_db)):
    """Build a pending entry from the vessel's two most recent AIS checks."""
    return sea_time_service.create_entry_from_positions(db, vessel_id)


# ---------------------------------------------------------------------------
# Logbook & reports
# ---------------------------------------------------------------------------

@router.post("/logbook/manual-entry", response_model=SeaTimeEntryRead, responses=_CONFLICT_RESPONSES, tags=["logbook"])
def create_manual_entry(body: ManualEntryRequest, db: Session = Depends(get_db)):
    return sea_time_service.create_manual_entry(
        db,
        vessel_id=body.vessel_id,
        start_time=body.start_time,
        end_time=body.end_time,
        department=body.department,
        service_type=body.service_type,
        notes=body.notes,
        watchkeeping_hours=body.watchkeeping_hours,
        additional_watchkeeping_hours=body.additional_watchkeeping_hours,
        is_stationary=body.is_stationary,
        anchorage=_anchorage(body.anchorage),
        routine_maintenance=body.routine_maintenance,
        start_latitude=body.start_latitude,
        start_longitude=body.start_longitude,
        end_latitude=body.end_latitude,
        end_longitude=body.end_longitude,
    )


@router.get("/logbook", response_model=list[SeaTimeEntryRead], tags=["logbook"])
def get_logbook(
    owner_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[EntryStatusEnum] = None,
    limit: int = Query(100, ge=1),
    db: Session = Depends(get_db),
):
    limit = min(limit, settings.MAX_QUERY_LIMIT)
    entries = sea_time_service.logbook(db, owner_id=owner_id, start=start, end=end, status=status)
    return entries[:limit]


@router.get("/reports/summary", response_model=SummaryRead, tags=["reports"])
def get_summary(
    owner_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return reporting.build_summary(db, owner_id=owner_id, start=start, end=end)


# ---------------------------------------------------------------------------
# Vessel tracking
# ---------------------------------------------------------------------------

@router.put("/vessels/{vessel_id}/activate", response_model=VesselRead, tags=["vessels"])
def activate_vessel(vessel_id: int, db: Session = Depends(get_db)):
    """Track this vessel; the owner's other vessels stop being tracked."""
    return vessel_registry.activate_vessel(db, vessel_id)


@router.put("/vessels/{vessel_id}/deactivate", response_model=VesselRead, tags=["vessels"])
def deactivate_vessel(vessel_id: int, db: Session = Depends(get_db)):
    return vessel_registry.deactivate_vessel(db, vessel_id)


@router.post("/ais/check/{vessel_id}", response_model=CheckResultRead, responses=_CONFLICT_RESPONSES, tags=["ais"])
def check_vessel_now(
    vessel_id: int,
    db: Session = Depends(get_db),
    provider: MyShipTrackingProvider = Depends(get_provider),
):
    """Poll the position provider for one vessel right away.

    409 while a scheduler worker is already checking the vessel.
    """
    vessel = sea_time_service.get_vessel(db, vessel_id)
    try:
        result = run_manual_check(db, vessel, provider)
    except ProviderError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"Position provider error ({exc.kind}): {exc}",
        )
    return CheckResultRead(
        vessel_id=result.vessel_id,
        movement=result.movement.value,
        effect=result.effect.value,
        stale=result.stale,
        entry_id=result.entry_id,
    )


@router.get("/ais/status/{vessel_id}", response_model=MovementStatusRead, tags=["ais"])
def get_movement_status(vessel_id: int, db: Session = Depends(get_db)):
    return sea_time_service.movement_status(db, vessel_id)


@router.get("/ais/debug-logs/{vessel_id}", response_model=list[DebugLogRead], tags=["ais"])
def get_debug_logs(vessel_id: int, limit: int = Query(50, ge=1), db: Session = Depends(get_db)):
    limit = min(limit, settings.MAX_QUERY_LIMIT)
    return sea_time_service.debug_logs(db, vessel_id, limit=limit)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@router.post("/admin/verify-vessel-tasks", tags=["admin"])
def verify_vessel_tasks(db: Session = Depends(get_db)):
    """Repair pass: every active vessel gets an active ais_check task."""
    return vessel_registry.verify_vessel_tasks(db)
