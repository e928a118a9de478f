"""SeaTimeEntry entity: a detected or manually logged period at sea.

Lifecycle: opened by the tracker (end_time NULL), closed into ``pending``,
then resolved to ``confirmed``/``rejected`` by the confirmation surface.
Accrual columns are written only on confirmation.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, ForeignKey, Text,
    Enum as SAEnum, CheckConstraint, Index, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seatime.models.base import (
    Base, EntryStatusEnum, ServiceTypeEnum, DepartmentEnum, EntrySourceEnum,
)


class SeaTimeEntry(Base):
    __tablename__ = "sea_time_entries"
    __table_args__ = (
        CheckConstraint("duration_hours IS NULL OR duration_hours >= 0", name="ck_duration_non_negative"),
        CheckConstraint("end_time IS NULL OR end_time >= start_time", name="ck_end_after_start"),
        Index("ix_sea_time_entries_vessel_start", "vessel_id", "start_time"),
        # At most one open entry per vessel, whichever process tries to open it
        Index(
            "uq_open_entry_per_vessel", "vessel_id", unique=True,
            sqlite_where=text("end_time IS NULL"), postgresql_where=text("end_time IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vessel_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(
        SAEnum(EntryStatusEnum), nullable=False, default=EntryStatusEnum.PENDING, index=True
    )
    service_type: Mapped[str] = mapped_column(
        SAEnum(ServiceTypeEnum), nullable=False, default=ServiceTypeEnum.ACTUAL_SEA_SERVICE
    )
    department: Mapped[Optional[str]] = mapped_column(SAEnum(DepartmentEnum), nullable=True)
    source: Mapped[str] = mapped_column(
        SAEnum(EntrySourceEnum), nullable=False, default=EntrySourceEnum.DETECTED
    )
    # Watchkeeping accumulates across days: 4 h = 1 day
    watchkeeping_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # Engineering only, at anchor/mooring on own power
    additional_watchkeeping_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_stationary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    start_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    end_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    end_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Accrual results (set on confirmation)
    sea_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    watchkeeping_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    additional_watchkeeping_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    yard_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # True = meets the 4 h rule; False = kept but flagged for manual review
    mca_compliant: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, index=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Yard service beyond the 90-day cap
    requires_documentation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    vessel = relationship("Vessel", back_populates="sea_time_entries")

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def is_terminal(self) -> bool:
        return self.status in (EntryStatusEnum.CONFIRMED, EntryStatusEnum.REJECTED)
