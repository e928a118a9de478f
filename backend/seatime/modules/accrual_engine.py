"""MCA sea-service accrual rules.

Pure functions over entry and vessel values. The confirmation service runs
``accrue_entry`` and writes the result onto the entry only when the whole
computation succeeded; ``accrue_period`` aggregates confirmed entries at
report time.

Rules (MCA / MSN 1858 guidance as applied to small commercial vessels):
  - A sea day is a calendar day with >= 4 h under way. Wind-powered time on a
    sail vessel counts without the 4 h engine-running minimum.
  - Anchor/mooring time counts as sea service only while part of an active
    passage, operationally necessary, no longer than the preceding voyage
    segment, and not the end of the passage.
  - Watchkeeping accrues in 4 h blocks across days: 4 h = 1 day, 4.01 h = 2.
  - Additional watchkeeping (engineering, stationary on own power) never
    stacks with a sea day and does not count towards full certificates.
  - Yard service is capped at 90 days; beyond that it needs documentation.
"""
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from seatime.config import settings
from seatime.errors import InvalidStateError
from seatime.models.base import (
    DepartmentEnum,
    EntryStatusEnum,
    PropulsionTypeEnum,
    ServiceTypeEnum,
)

_SEA_DAY_SERVICE_TYPES = (ServiceTypeEnum.ACTUAL_SEA_SERVICE, ServiceTypeEnum.WATCHKEEPING_SERVICE)


def duration_hours(start: datetime, end: datetime) -> float:
    hours = (end - start).total_seconds() / 3600
    if hours < 0:
        raise InvalidStateError(f"End time {end.isoformat()} is before start time {start.isoformat()}")
    return round(hours, 2)


def split_by_calendar_day(start: datetime, end: datetime) -> dict[date, float]:
    """Hours spent in each calendar day (UTC) of [start, end)."""
    if end < start:
        raise InvalidStateError(f"End time {end.isoformat()} is before start time {start.isoformat()}")
    buckets: dict[date, float] = {}
    cursor = start
    while cursor < end:
        midnight = datetime.combine(cursor.date() + timedelta(days=1), time.min)
        segment_end = min(midnight, end)
        buckets[cursor.date()] = round((segment_end - cursor).total_seconds() / 3600, 4)
        cursor = segment_end
    return buckets


def watchkeeping_days(hours: Optional[float]) -> int:
    if not hours or hours <= 0:
        return 0
    return math.ceil(round(hours, 4) / settings.WATCHKEEPING_BLOCK_HOURS)


def is_mca_compliant(duration: float) -> bool:
    return duration >= settings.MCA_MIN_SEA_DAY_HOURS


@dataclass
class AnchorageContext:
    """Circumstances of a stationary period, supplied by the confirming user."""

    part_of_active_passage: bool = False
    operationally_necessary: bool = False
    preceding_voyage_hours: Optional[float] = None
    is_passage_end: bool = False

    def failures(self, stationary_hours: float) -> list[str]:
        failed = []
        if not self.part_of_active_passage:
            failed.append("not part of an active passage")
        if not self.operationally_necessary:
            failed.append("not operationally necessary")
        if self.preceding_voyage_hours is None or stationary_hours > self.preceding_voyage_hours:
            failed.append("longer than the preceding voyage segment")
        if self.is_passage_end:
            failed.append("end of passage")
        return failed


@dataclass
class EntryAccrual:
    duration_hours: float
    sea_days: int = 0
    watchkeeping_hours: Optional[float] = None
    watchkeeping_days: int = 0
    additional_watchkeeping_hours: Optional[float] = None
    additional_watchkeeping_days: int = 0
    yard_days: int = 0
    mca_compliant: bool = False
    needs_review: bool = False
    requires_documentation: bool = False
    day_buckets: dict[date, float] = field(default_factory=dict)
    sea_dates: list[date] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


def qualifying_sea_dates(buckets: dict[date, float], propulsion_type) -> list[date]:
    """Calendar days that earn a sea day on their own hours."""
    if PropulsionTypeEnum(propulsion_type) == PropulsionTypeEnum.SAIL:
        return sorted(d for d, h in buckets.items() if h > 0)
    return sorted(d for d, h in buckets.items() if h >= settings.MCA_MIN_SEA_DAY_HOURS)


def accrue_entry(
    entry,
    vessel,
    department: DepartmentEnum | str,
    service_type: ServiceTypeEnum | str,
    watchkeeping_hours: Optional[float] = None,
    additional_watchkeeping_hours: Optional[float] = None,
    is_stationary: Optional[bool] = None,
    anchorage: Optional[AnchorageContext] = None,
    routine_maintenance: bool = False,
    prior_yard_days: int = 0,
) -> EntryAccrual:
    """Compute the accrual for one closed entry. Raises InvalidStateError."""
    if entry.end_time is None:
        raise InvalidStateError(f"Entry {entry.id} is still open")
    department = DepartmentEnum(department)
    service_type = ServiceTypeEnum(service_type)
    if is_stationary is None:
        is_stationary = bool(entry.is_stationary)

    hours = duration_hours(entry.start_time, entry.end_time)
    buckets = split_by_calendar_day(entry.start_time, entry.end_time)
    result = EntryAccrual(
        duration_hours=hours,
        day_buckets=buckets,
        mca_compliant=is_mca_compliant(hours),
    )
    result.needs_review = not result.mca_compliant
    if result.needs_review:
        result.reasons.append(
            f"{hours:.2f} h is under the {settings.MCA_MIN_SEA_DAY_HOURS:g} h minimum; kept for review"
        )

    # Actual sea days
    if service_type in _SEA_DAY_SERVICE_TYPES:
        dates = qualifying_sea_dates(buckets, vessel.propulsion_type)
        if is_stationary:
            failed = (anchorage or AnchorageContext()).failures(hours)
            if failed:
                result.reasons.append("Stationary period not counted as sea service: " + ", ".join(failed))
                dates = []
        result.sea_dates = dates
        result.sea_days = len(dates)
    else:
        result.reasons.append(f"{service_type.value} does not earn actual sea days")

    # Watchkeeping
    if watchkeeping_hours is None and service_type == ServiceTypeEnum.WATCHKEEPING_SERVICE:
        watchkeeping_hours = hours
    if watchkeeping_hours is not None:
        if watchkeeping_hours < 0:
            raise InvalidStateError("Watchkeeping hours cannot be negative")
        result.watchkeeping_hours = round(watchkeeping_hours, 2)
        result.watchkeeping_days = watchkeeping_days(watchkeeping_hours)

    # Additional watchkeeping: engineering, at anchor or moored on own power
    if additional_watchkeeping_hours:
        if department != DepartmentEnum.ENGINEERING:
            raise InvalidStateError("Additional watchkeeping is only available to the engineering department")
        if not is_stationary:
            raise InvalidStateError("Additional watchkeeping requires a stationary (anchor/mooring) entry")
        if additional_watchkeeping_hours < 0:
            raise InvalidStateError("Additional watchkeeping hours cannot be negative")
        # A calendar day earns either an actual sea day or additional watchkeeping
        sea_dates = set(result.sea_dates)
        eligible = round(sum(h for d, h in buckets.items() if d not in sea_dates), 4)
        if eligible <= 0:
            raise InvalidStateError(
                "Additional watchkeeping cannot be claimed on days that already earn actual sea days"
            )
        if additional_watchkeeping_hours > eligible:
            result.reasons.append(
                f"Additional watchkeeping limited to {eligible:g} h on days without an actual sea day"
            )
            additional_watchkeeping_hours = eligible
        result.additional_watchkeeping_hours = round(additional_watchkeeping_hours, 2)
        result.additional_watchkeeping_days = watchkeeping_days(additional_watchkeeping_hours)

    # Yard service
    if service_type == ServiceTypeEnum.YARD_SERVICE:
        if routine_maintenance:
            result.reasons.append("Routine maintenance is excluded from yard service")
        else:
            result.yard_days = len(buckets)
            if prior_yard_days + result.yard_days > settings.YARD_SERVICE_CAP_DAYS:
                result.requires_documentation = True
                result.reasons.append(
                    f"Yard service exceeds {settings.YARD_SERVICE_CAP_DAYS} days; documentation required"
                )

    return result


@dataclass
class PeriodAccrual:
    entry_count: int = 0
    total_hours: float = 0.0
    actual_sea_days: int = 0
    sea_dates: list[date] = field(default_factory=list)
    watchkeeping_hours: float = 0.0
    watchkeeping_days: int = 0
    # Reported separately: does not count towards full certificates
    additional_watchkeeping_days: int = 0
    yard_days: int = 0
    yard_days_requiring_documentation: int = 0


def accrue_period(entries: Iterable) -> PeriodAccrual:
    """Aggregate confirmed, closed entries. Other entries are ignored."""
    counted = [
        e for e in entries
        if e.status == EntryStatusEnum.CONFIRMED and e.end_time is not None
    ]
    result = PeriodAccrual(entry_count=len(counted))

    sea_dates: set[date] = set()
    for e in counted:
        if e.sea_days:
            buckets = split_by_calendar_day(e.start_time, e.end_time)
            propulsion = e.vessel.propulsion_type if e.vessel is not None else PropulsionTypeEnum.ENGINE
            sea_dates.update(qualifying_sea_dates(buckets, propulsion)[: e.sea_days])
    result.sea_dates = sorted(sea_dates)
    result.actual_sea_days = len(sea_dates)

    wk_hours: dict[DepartmentEnum, float] = defaultdict(float)
    additional_hours = 0.0
    for e in counted:
        result.total_hours += e.duration_hours or 0.0
        if e.watchkeeping_hours:
            wk_hours[DepartmentEnum(e.department or DepartmentEnum.DECK)] += e.watchkeeping_hours
        if e.additional_watchkeeping_hours:
            buckets = split_by_calendar_day(e.start_time, e.end_time)
            eligible = sum(h for d, h in buckets.items() if d not in sea_dates)
            additional_hours += min(e.additional_watchkeeping_hours, eligible)
        result.yard_days += e.yard_days or 0

    deck_days = min(watchkeeping_days(wk_hours[DepartmentEnum.DECK]), result.actual_sea_days)
    result.watchkeeping_days = deck_days + watchkeeping_days(wk_hours[DepartmentEnum.ENGINEERING])
    result.watchkeeping_hours = round(sum(wk_hours.values()), 2)
    result.additional_watchkeeping_days = watchkeeping_days(additional_hours)
    result.total_hours = round(result.total_hours, 2)

    cap = settings.YARD_SERVICE_CAP_DAYS
    if result.yard_days > cap:
        result.yard_days_requiring_documentation = result.yard_days - cap
        result.yard_days = cap
    return result
