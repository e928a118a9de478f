"""Pydantic schemas for vessels, AIS checks and diagnostic logs."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class VesselRead(BaseModel):
    id: int
    owner_id: Optional[str] = None
    mmsi: str
    name: str
    propulsion_type: str
    is_active: bool
    flag: Optional[str] = None
    callsign: Optional[str] = None
    official_number: Optional[str] = None
    length_metres: Optional[float] = None
    gross_tonnes: Optional[float] = None

    model_config = {"from_attributes": True}


class MovementStatusRead(BaseModel):
    vessel_id: int
    mmsi: str
    is_active: bool
    movement: Optional[str] = None
    speed_knots: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_check_time: Optional[datetime] = None
    open_entry_id: Optional[int] = None
    open_entry_start: Optional[datetime] = None
    task_active: bool = False
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class CheckResultRead(BaseModel):
    vessel_id: int
    movement: str
    effect: str
    stale: bool = False
    entry_id: Optional[int] = None


class DebugLogRead(BaseModel):
    id: int
    vessel_id: int
    mmsi: str
    api_url: str
    request_time: datetime
    response_status: str
    response_body: Optional[str] = None
    authentication_status: str
    error_message: Optional[str] = None
    api_source: Optional[str] = None

    model_config = {"from_attributes": True}
