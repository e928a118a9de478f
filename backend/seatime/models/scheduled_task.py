"""ScheduledTask entity — drives the per-vessel polling cadence.

Owned by the scheduler (last_run/next_run) and the vessel registry
(creation, activation, deletion). While a task is in flight its next_run is
pushed SCHEDULER_LEASE_SECONDS into the future.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, Boolean, DateTime, ForeignKey, Text, Enum as SAEnum, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seatime.models.base import Base, TaskTypeEnum


class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"
    __table_args__ = (
        Index("ix_scheduled_tasks_vessel_task", "vessel_id", "task_type"),
        Index("ix_scheduled_tasks_due", "is_active", "next_run"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vessel_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False
    )
    task_type: Mapped[str] = mapped_column(
        SAEnum(TaskTypeEnum), nullable=False, default=TaskTypeEnum.AIS_CHECK
    )
    interval_hours: Mapped[float] = mapped_column(Float, nullable=False, default=2.0)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Informational; the lease itself is the pushed-out next_run
    lease_owner: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    vessel = relationship("Vessel", back_populates="scheduled_tasks")
