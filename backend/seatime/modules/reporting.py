"""Sea-time summary over confirmed entries.

Totals and breakdowns by vessel, month and service type, plus the MCA period
accrual. Rendering (PDF/CSV) is left to the caller.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import polars as pl
from sqlalchemy.orm import Session

from seatime.models.base import EntryStatusEnum, ServiceTypeEnum
from seatime.modules.accrual_engine import accrue_period
from seatime.modules.entry_repository import EntryRepository
from seatime.modules.normalize import to_utc_naive

logger = logging.getLogger(__name__)

_SCHEMA = {
    "vessel_id": pl.Int64,
    "vessel_name": pl.Utf8,
    "month": pl.Utf8,
    "service_type": pl.Utf8,
    "hours": pl.Float64,
}


def _days(hours: float) -> float:
    return round(hours / 24, 2)


def build_summary(
    db: Session,
    owner_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict[str, Any]:
    entries = EntryRepository(db).list_in_range(
        owner_id=owner_id,
        start=to_utc_naive(start) if start else None,
        end=to_utc_naive(end) if end else None,
        status=EntryStatusEnum.CONFIRMED,
    )
    entries = [e for e in entries if e.end_time is not None]

    # ── 1. One row per confirmed entry ───────────────────────────────────────
    df = pl.DataFrame(
        {
            "vessel_id": [e.vessel_id for e in entries],
            "vessel_name": [e.vessel.name if e.vessel is not None else None for e in entries],
            "month": [e.start_time.strftime("%Y-%m") for e in entries],
            "service_type": [ServiceTypeEnum(e.service_type).value for e in entries],
            "hours": [float(e.duration_hours or 0.0) for e in entries],
        },
        schema=_SCHEMA,
    )
    total_hours = round(float(df["hours"].sum() or 0.0), 2)

    # ── 2. Breakdowns ────────────────────────────────────────────────────────
    by_vessel = (
        df.group_by("vessel_id", "vessel_name")
        .agg(pl.col("hours").sum().alias("total_hours"), pl.len().alias("entry_count"))
        .sort(["total_hours", "vessel_id"], descending=[True, False])
    )
    by_month = (
        df.group_by("month")
        .agg(pl.col("hours").sum().alias("total_hours"), pl.len().alias("entry_count"))
        .sort("month")
    )
    by_service = (
        df.group_by("service_type")
        .agg(pl.col("hours").sum().alias("total_hours"), pl.len().alias("entry_count"))
        .sort(["total_hours", "service_type"], descending=[True, False])
    )

    # ── 3. MCA accrual for the period ────────────────────────────────────────
    period = accrue_period(entries)

    logger.debug("Built summary over %d confirmed entries (%.2f h)", len(entries), total_hours)
    return {
        "total_hours": total_hours,
        "total_days": _days(total_hours),
        "entry_count": len(entries),
        "entries_by_vessel": [
            {
                "vessel_id": row["vessel_id"],
                "vessel_name": row["vessel_name"],
                "total_hours": round(row["total_hours"], 2),
                "total_days": _days(row["total_hours"]),
                "entry_count": row["entry_count"],
            }
            for row in by_vessel.to_dicts()
        ],
        "entries_by_month": [
            {
                "month": row["month"],
                "total_hours": round(row["total_hours"], 2),
                "total_days": _days(row["total_hours"]),
                "entry_count": row["entry_count"],
            }
            for row in by_month.to_dicts()
        ],
        "entries_by_service_type": [
            {
                "service_type": row["service_type"],
                "total_hours": round(row["total_hours"], 2),
                "total_days": _days(row["total_hours"]),
                "entry_count": row["entry_count"],
            }
            for row in by_service.to_dicts()
        ],
        "accrual": {
            "actual_sea_days": period.actual_sea_days,
            "watchkeeping_hours": period.watchkeeping_hours,
            "watchkeeping_days": period.watchkeeping_days,
            "additional_watchkeeping_days": period.additional_watchkeeping_days,
            "yard_days": period.yard_days,
            "yard_days_requiring_documentation": period.yard_days_requiring_documentation,
        },
    }
