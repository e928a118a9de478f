"""MyShipTracking client — latest position/speed for a single vessel.

GET {MYSHIPTRACKING_API_BASE}/vessel?mmsi=<mmsi>&response=simple with a
Bearer token. The legacy ``vesselsonmap`` GeoJSON shape (``features[0]``) is
accepted as well so older accounts keep working.

Every attempt, successful or not, yields a ``ProviderCall`` describing the
request for the append-only diagnostic log. Nothing else is written before a
fetch succeeds.

API docs: https://api.myshiptracking.com/
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx

from seatime.config import settings
from seatime.errors import (
    AuthenticationError,
    InvalidProviderResponseError,
    ProviderError,
    TransientProviderError,
    VesselNotFoundError,
)
from seatime.modules.normalize import (
    mask_secret,
    normalize_coordinates,
    normalize_speed,
    parse_timestamp_flexible,
)
from seatime.utils.http_retry import RETRYABLE_STATUS_CODES, retry_request

logger = logging.getLogger(__name__)

API_SOURCE = "myshiptracking"


@dataclass
class PositionSnapshot:
    """A single timestamped fix. Transient — the engine persists an AISCheck instead."""

    vessel_id: int
    timestamp: datetime
    latitude: Optional[float]
    longitude: Optional[float]
    speed_knots: Optional[float]
    raw_status: Optional[str] = None
    api_source: str = API_SOURCE

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class ProviderCall:
    """What was sent and what came back, for the diagnostic log."""

    api_url: str
    request_time: datetime
    response_status: str
    authentication_status: str
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    api_source: str = API_SOURCE


@dataclass
class FetchOutcome:
    call: ProviderCall
    snapshot: Optional[PositionSnapshot] = None
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.snapshot is not None


@dataclass
class MyShipTrackingProvider:
    api_key: Optional[str] = None
    base_url: str = ""
    timeout: Optional[float] = None
    retry_delays: Optional[list[float]] = None
    # Injected in tests (httpx.MockTransport)
    transport: Optional[httpx.BaseTransport] = None

    def __post_init__(self) -> None:
        if self.api_key is None:
            self.api_key = settings.MYSHIPTRACKING_API_KEY
        if not self.base_url:
            self.base_url = settings.MYSHIPTRACKING_API_BASE
        if self.timeout is None:
            self.timeout = settings.POSITION_PROVIDER_TIMEOUT
        if self.retry_delays is None:
            self.retry_delays = list(settings.POSITION_PROVIDER_RETRY_DELAYS)

    def fetch_position(self, vessel, now: datetime | None = None) -> FetchOutcome:
        """Fetch the latest fix for ``vessel`` (needs ``.id`` and ``.mmsi``).

        Never raises for provider failures: the typed error is returned on the
        outcome together with the diagnostic record.
        """
        request_time = now or datetime.utcnow()
        url = f"{self.base_url.rstrip('/')}/vessel"
        params = {"mmsi": vessel.mmsi, "response": "simple"}
        logged_url = f"{url}?mmsi={vessel.mmsi}&response=simple"

        if not self.api_key:
            logger.warning("MyShipTracking API key not configured — cannot poll MMSI %s", vessel.mmsi)
            return FetchOutcome(
                call=ProviderCall(
                    api_url=logged_url,
                    request_time=request_time,
                    response_status="not_sent",
                    authentication_status="not_configured",
                    error_message="MYSHIPTRACKING_API_KEY not configured",
                ),
                error=AuthenticationError("MYSHIPTRACKING_API_KEY not configured"),
            )

        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
        logger.debug("Polling MyShipTracking for MMSI %s (key %s)", vessel.mmsi, mask_secret(self.api_key))

        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True, transport=self.transport) as client:
                resp = retry_request(
                    client.get, url, params=params, headers=headers,
                    delays=self.retry_delays,
                )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            error = _error_for_status(status, vessel.mmsi)
            return FetchOutcome(
                call=ProviderCall(
                    api_url=logged_url,
                    request_time=request_time,
                    response_status=str(status),
                    authentication_status="failed" if isinstance(error, AuthenticationError) else "authenticated",
                    response_body=_truncate(exc.response.text),
                    error_message=str(error),
                ),
                error=error,
            )
        except httpx.TimeoutException as exc:
            logger.warning("MyShipTracking timed out after %.1fs for MMSI %s", self.timeout, vessel.mmsi)
            return FetchOutcome(
                call=ProviderCall(
                    api_url=logged_url,
                    request_time=request_time,
                    response_status="timeout",
                    authentication_status="unknown",
                    error_message=f"{type(exc).__name__}: {exc}",
                ),
                error=TransientProviderError(f"Timed out fetching MMSI {vessel.mmsi}", kind="timeout"),
            )
        except httpx.TransportError as exc:
            logger.warning("MyShipTracking network error for MMSI %s: %s", vessel.mmsi, exc)
            return FetchOutcome(
                call=ProviderCall(
                    api_url=logged_url,
                    request_time=request_time,
                    response_status="network_error",
                    authentication_status="unknown",
                    error_message=f"{type(exc).__name__}: {exc}",
                ),
                error=TransientProviderError(f"Network error fetching MMSI {vessel.mmsi}", kind="network"),
            )

        call = ProviderCall(
            api_url=logged_url,
            request_time=request_time,
            response_status=str(resp.status_code),
            authentication_status="authenticated",
            response_body=_truncate(resp.text),
        )
        try:
            snapshot = _parse_snapshot(resp, vessel, request_time)
        except ProviderError as exc:
            call.error_message = str(exc)
            return FetchOutcome(call=call, error=exc)

        logger.info(
            "MyShipTracking: MMSI %s at (%s, %s) speed=%s kn",
            vessel.mmsi, snapshot.latitude, snapshot.longitude, snapshot.speed_knots,
        )
        return FetchOutcome(call=call, snapshot=snapshot)


def _error_for_status(status: int, mmsi: str) -> ProviderError:
    if status in (401, 403):
        logger.error("MyShipTracking rejected credentials (HTTP %d) for MMSI %s", status, mmsi)
        return AuthenticationError(f"Provider authentication failed (HTTP {status})", status_code=status)
    if status == 404:
        return VesselNotFoundError(f"No position for MMSI {mmsi}", status_code=status)
    if status == 429:
        logger.warning("MyShipTracking rate limit hit for MMSI %s", mmsi)
        return TransientProviderError("Provider rate limit exceeded", status_code=status, kind="rate_limited")
    if status in RETRYABLE_STATUS_CODES:
        return TransientProviderError(f"Provider server error (HTTP {status})", status_code=status)
    return InvalidProviderResponseError(f"Provider rejected request (HTTP {status})", status_code=status)


def _extract_payload(data: Any) -> dict | None:
    """Pull the position record out of either response shape."""
    if isinstance(data, dict) and isinstance(data.get("features"), list):
        # Legacy vesselsonmap GeoJSON
        if not data["features"]:
            return None
        feature = data["features"][0] or {}
        coords = (feature.get("geometry") or {}).get("coordinates") or [None, None]
        props = feature.get("properties") or {}
        return {
            "lng": coords[0] if len(coords) > 0 else None,
            "lat": coords[1] if len(coords) > 1 else None,
            "speed": props.get("SPEED"),
            "nav_status": props.get("STATUS"),
            "received": props.get("TIME"),
        }
    if isinstance(data, dict):
        if str(data.get("status", "")).lower() == "error":
            return None
        payload = data.get("data", data)
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        return payload if isinstance(payload, dict) and payload else None
    return None


def _parse_snapshot(resp: httpx.Response, vessel, request_time: datetime) -> PositionSnapshot:
    try:
        data = resp.json()
    except ValueError as exc:
        raise InvalidProviderResponseError(f"Provider returned non-JSON body: {exc}") from exc

    payload = _extract_payload(data)
    if payload is None:
        raise VesselNotFoundError(f"No position for MMSI {vessel.mmsi}")

    lat, lon = normalize_coordinates(
        payload.get("lat", payload.get("latitude")),
        payload.get("lng", payload.get("lon", payload.get("longitude"))),
    )
    speed = normalize_speed(payload.get("speed", payload.get("sog")))
    # Fix time as reported by the provider; fall back to when we asked
    ts = parse_timestamp_flexible(payload.get("received") or payload.get("timestamp")) or request_time
    raw_status = payload.get("nav_status") or payload.get("status")

    return PositionSnapshot(
        vessel_id=vessel.id,
        timestamp=ts,
        latitude=lat,
        longitude=lon,
        speed_knots=speed,
        raw_status=str(raw_status) if raw_status is not None else None,
    )


def _truncate(body: str | None) -> str | None:
    if body is None:
        return None
    limit = settings.DIAGNOSTIC_BODY_MAX_CHARS
    return body if len(body) <= limit else body[:limit] + "…"
