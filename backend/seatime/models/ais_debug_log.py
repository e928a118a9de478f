"""AISDebugLog entity — append-only record of every position poll attempt.

Operational diagnosis only; rows are never updated.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seatime.models.base import Base


class AISDebugLog(Base):
    __tablename__ = "ais_debug_logs"
    __table_args__ = (
        Index("ix_ais_debug_logs_vessel_request_time", "vessel_id", "request_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vessel_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False
    )
    mmsi: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    # API key is masked before the URL is stored
    api_url: Mapped[str] = mapped_column(Text, nullable=False)
    request_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    # HTTP status code as text, or "timeout" / "network_error"
    response_status: Mapped[str] = mapped_column(String(32), nullable=False)
    response_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # "authenticated", "failed", "not_configured"
    authentication_status: Mapped[str] = mapped_column(String(32), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    api_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    vessel = relationship("Vessel", back_populates="debug_logs")
