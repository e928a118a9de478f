"""Vessel entity — a vessel a mariner serves on and may have tracked."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, Boolean, DateTime, Enum as SAEnum, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seatime.models.base import Base, PropulsionTypeEnum


class Vessel(Base):
    __tablename__ = "vessels"
    __table_args__ = (
        # Same MMSI may be tracked by different owners, but only once per owner
        UniqueConstraint("owner_id", "mmsi", name="uq_vessels_owner_mmsi"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    mmsi: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    propulsion_type: Mapped[str] = mapped_column(
        SAEnum(PropulsionTypeEnum), nullable=False, default=PropulsionTypeEnum.ENGINE
    )
    # At most one active vessel per owner, enforced by vessel_registry.activate_vessel
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    flag: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    callsign: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    official_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    length_metres: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    gross_tonnes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    # Relationships
    sea_time_entries: Mapped[list] = relationship(
        "SeaTimeEntry", back_populates="vessel", cascade="all, delete-orphan"
    )
    ais_checks: Mapped[list] = relationship(
        "AISCheck", back_populates="vessel", cascade="all, delete-orphan"
    )
    scheduled_tasks: Mapped[list] = relationship(
        "ScheduledTask", back_populates="vessel", cascade="all, delete-orphan"
    )
    debug_logs: Mapped[list] = relationship(
        "AISDebugLog", back_populates="vessel", cascade="all, delete-orphan"
    )
