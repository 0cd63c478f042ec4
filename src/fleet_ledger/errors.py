from __future__ import annotations


class FleetLedgerError(Exception):
    """Base class for errors raised by the ledger engine."""


class NotFound(FleetLedgerError, LookupError):
    """Raised when a vehicle or ledger entry reference does not resolve."""


class ValidationError(FleetLedgerError, ValueError):
    """Raised when input is rejected before any computation or write."""


class ConflictError(FleetLedgerError):
    """Reserved for optimistic-lock support. Upserts are last-writer-wins today."""


class StorageError(FleetLedgerError):
    """Raised when the underlying store fails. Never retried."""


__all__ = [
    "FleetLedgerError",
    "NotFound",
    "ValidationError",
    "ConflictError",
    "StorageError",
]
