"""Boundary normalization for provider and user input.

Numeric fields arrive as string, number or null (provider JSON, API bodies,
decimal columns from older databases). They are converted once, here, and
business logic downstream only ever sees ``float | None``.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


# --- Shared helpers ---

_COMMON_TIMESTAMP_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%d-%m-%Y %H:%M:%S",
]

# AIS "not available" SOG sentinel (raw 1023) after unit conversion
_SOG_NOT_AVAILABLE: float = 102.2


def to_float(value: Any) -> float | None:
    """Convert a string/number/None to a finite float.

    Returns None for None, empty strings, unparseable strings, booleans,
    NaN and ±Infinity.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, Decimal):
        try:
            result = float(value)
        except (InvalidOperation, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def normalize_speed(value: Any) -> float | None:
    """Speed over ground in knots; negative or sentinel values → None."""
    sog = to_float(value)
    if sog is None or sog < 0 or sog >= _SOG_NOT_AVAILABLE:
        return None
    return sog


def normalize_coordinates(lat: Any, lon: Any) -> tuple[float | None, float | None]:
    """Return (lat, lon), or (None, None) if either is missing or out of range."""
    lat_f = to_float(lat)
    lon_f = to_float(lon)
    if lat_f is None or lon_f is None:
        return None, None
    if not (-90 <= lat_f <= 90) or not (-180 <= lon_f <= 180):
        # 91/181 are the AIS "not available" values
        return None, None
    return lat_f, lon_f


def to_utc_naive(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp_flexible(ts: Any) -> datetime | None:
    """Parse a timestamp from various formats into naive UTC.

    Supports: datetime, ISO 8601, Unix epoch, and common strftime formats.
    Returns None if parsing fails.
    """
    if isinstance(ts, datetime):
        return to_utc_naive(ts)

    # Unix epoch (int or float)
    if isinstance(ts, (int, float)) and not isinstance(ts, bool) and ts > 1_000_000_000:
        try:
            return to_utc_naive(datetime.fromtimestamp(ts, tz=timezone.utc))
        except (OSError, ValueError, OverflowError):
            return None

    if isinstance(ts, str):
        ts_str = ts.strip()
        if not ts_str:
            return None

        # Try ISO format first
        try:
            return to_utc_naive(datetime.fromisoformat(ts_str.replace("Z", "+00:00")))
        except ValueError:
            pass

        for fmt in _COMMON_TIMESTAMP_FORMATS:
            try:
                return datetime.strptime(ts_str, fmt)
            except ValueError:
                continue

    return None


def is_valid_mmsi(mmsi: str) -> bool:
    return bool(mmsi) and re.fullmatch(r"\d{9}", mmsi) is not None


def mask_secret(secret: str | None, keep: int = 6) -> str:
    """Mask an API key for logs and stored URLs."""
    if not secret or len(secret) <= keep:
        return "***"
    return secret[:keep] + "***"
