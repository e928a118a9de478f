"""Exception taxonomy for the sea-time engine.

Provider errors are raised by the position provider and handled at the
scheduler's per-task boundary. Store/state errors are raised by the tracker,
the confirmation service and the accrual engine, and mapped to HTTP status
codes in ``seatime.main``.
"""
from __future__ import annotations


class SeaTimeError(Exception):
    """Base class for all engine errors."""


# ── Position provider ────────────────────────────────────────────────────────

class ProviderError(SeaTimeError):
    """A position fetch failed. ``kind`` is one of the provider error kinds."""

    kind = "network"

    def __init__(self, message: str, status_code: int | None = None, kind: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        if kind is not None:
            self.kind = kind


class TransientProviderError(ProviderError):
    """Network failure, timeout, rate limit or 5xx. Retried on the next tick."""


class AuthenticationError(ProviderError):
    """Provider rejected our credentials (401/403). Task stays scheduled."""

    kind = "unauthenticated"


class VesselNotFoundError(ProviderError):
    """Provider has no position for the requested MMSI."""

    kind = "not_found"


class InvalidProviderResponseError(ProviderError):
    kind = "invalid_response"


# ── Store / state machine ────────────────────────────────────────────────────

class DataConflictError(SeaTimeError, ValueError):
    """Duplicate open entry, overlapping time range, or identical coordinates.

    ``existing_entry_id`` names the entry that won, when there is one.
    """

    def __init__(self, message: str, existing_entry_id: int | None = None):
        super().__init__(message)
        self.existing_entry_id = existing_entry_id


class InvalidStateError(SeaTimeError, ValueError):
    """Requested transition is not allowed from the entry's current state."""


class EntryNotFoundError(SeaTimeError, LookupError):
    pass


class UnknownVesselError(SeaTimeError, LookupError):
    pass


class LeaseHeldError(DataConflictError):
    """Another worker holds the vessel's task lease; try again once it finishes."""
