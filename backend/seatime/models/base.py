"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class PropulsionTypeEnum(str, enum.Enum):
    ENGINE = "engine"
    SAIL = "sail"


class EntryStatusEnum(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class ServiceTypeEnum(str, enum.Enum):
    ACTUAL_SEA_SERVICE = "actual_sea_service"
    WATCHKEEPING_SERVICE = "watchkeeping_service"
    STANDBY_SERVICE = "standby_service"
    YARD_SERVICE = "yard_service"
    SERVICE_IN_PORT = "service_in_port"


class DepartmentEnum(str, enum.Enum):
    DECK = "deck"
    ENGINEERING = "engineering"


class EntrySourceEnum(str, enum.Enum):
    DETECTED = "detected"      # opened/closed by the tracker
    MANUAL = "manual"          # logbook manual entry, confirmed on creation
    POSITIONS = "positions"    # built from the two latest AIS checks


class MovementEnum(str, enum.Enum):
    MOVING = "moving"
    STATIONARY = "stationary"
    UNKNOWN = "unknown"


class TaskTypeEnum(str, enum.Enum):
    AIS_CHECK = "ais_check"
