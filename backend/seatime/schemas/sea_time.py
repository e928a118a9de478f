"""Pydantic schemas for sea-time entries, confirmation and reports."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from seatime.models.base import DepartmentEnum, ServiceTypeEnum
from seatime.modules.normalize import to_utc_naive


class SeaTimeEntryRead(BaseModel):
    id: int
    vessel_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_hours: Optional[float] = None
    status: str
    service_type: str
    department: Optional[str] = None
    source: str
    watchkeeping_hours: Optional[float] = None
    additional_watchkeeping_hours: Optional[float] = None
    is_stationary: bool = False
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    notes: Optional[str] = None
    sea_days: Optional[int] = None
    watchkeeping_days: Optional[int] = None
    additional_watchkeeping_days: Optional[int] = None
    yard_days: Optional[int] = None
    mca_compliant: Optional[bool] = None
    needs_review: bool = False
    requires_documentation: bool = False

    model_config = {"from_attributes": True}


class AnchorageContextIn(BaseModel):
    """Circumstances of an anchor/mooring period (all four must hold to count)."""

    part_of_active_passage: bool = False
    operationally_necessary: bool = False
    preceding_voyage_hours: Optional[float] = Field(default=None, ge=0)
    is_passage_end: bool = False


class ConfirmEntryRequest(BaseModel):
    department: DepartmentEnum
    service_type: ServiceTypeEnum = ServiceTypeEnum.ACTUAL_SEA_SERVICE
    notes: Optional[str] = None
    watchkeeping_hours: Optional[float] = Field(default=None, ge=0)
    additional_watchkeeping_hours: Optional[float] = Field(default=None, ge=0)
    is_stationary: Optional[bool] = None
    anchorage: Optional[AnchorageContextIn] = None
    routine_maintenance: bool = False


class RejectEntryRequest(BaseModel):
    notes: Optional[str] = None


class ManualEntryRequest(BaseModel):
    vessel_id: int
    start_time: datetime
    end_time: datetime
    department: DepartmentEnum
    service_type: ServiceTypeEnum = ServiceTypeEnum.ACTUAL_SEA_SERVICE
    notes: Optional[str] = None
    watchkeeping_hours: Optional[float] = Field(default=None, ge=0)
    additional_watchkeeping_hours: Optional[float] = Field(default=None, ge=0)
    is_stationary: bool = False
    anchorage: Optional[AnchorageContextIn] = None
    routine_maintenance: bool = False
    start_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    end_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _end_after_start(self):
        if to_utc_naive(self.end_time) <= to_utc_naive(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class BreakdownRow(BaseModel):
    total_hours: float
    total_days: float
    entry_count: int


class VesselBreakdown(BreakdownRow):
    vessel_id: int
    vessel_name: Optional[str] = None


class MonthBreakdown(BreakdownRow):
    month: str


class ServiceTypeBreakdown(BreakdownRow):
    service_type: str


class PeriodAccrualRead(BaseModel):
    actual_sea_days: int
    watchkeeping_hours: float
    watchkeeping_days: int
    additional_watchkeeping_days: int
    yard_days: int
    yard_days_requiring_documentation: int


class SummaryRead(BaseModel):
    total_hours: float
    total_days: float
    entry_count: int
    entries_by_vessel: list[VesselBreakdown]
    entries_by_month: list[MonthBreakdown]
    entries_by_service_type: list[ServiceTypeBreakdown]
    accrual: PeriodAccrualRead
