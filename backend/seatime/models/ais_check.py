"""AISCheck entity — one row per successful position poll.

The previous check is what the stale-fix guard compares against, so the
tracker needs no in-process memory between ticks.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, Enum as SAEnum, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seatime.models.base import Base, MovementEnum


class AISCheck(Base):
    __tablename__ = "ais_checks"
    __table_args__ = (
        Index("ix_ais_checks_vessel_time", "vessel_id", "check_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vessel_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False
    )
    check_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    movement: Mapped[str] = mapped_column(SAEnum(MovementEnum), nullable=False)
    speed_knots: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    api_source: Mapped[str] = mapped_column(String(50), nullable=False, default="myshiptracking")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    vessel = relationship("Vessel", back_populates="ais_checks")
