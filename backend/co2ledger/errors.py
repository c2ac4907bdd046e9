# Overview: Domain error taxonomy shared by services and API routes.

"""
Ledger errors.

Every operation fails with exactly one of these. Routes translate them to
HTTP responses using ``status_code``; nothing in the service layer returns
partial results alongside an error.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for all inventory ledger failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "type": type(self).__name__}


class ValidationError(LedgerError):
    """400-level input problem (missing field, non-positive weight, empty comment)."""


class ApprovalRequiredError(LedgerError):
    """Filling batch submitted without approval."""


class StaleSelectionError(LedgerError):
    """A selected cylinder no longer matches the operation's precondition."""

    status_code = 409


class InsufficientInventoryError(LedgerError):
    """Tank level would drop below zero."""

    status_code = 409


class OverCapacityError(LedgerError):
    """Tank level would exceed its capacity."""

    status_code = 409


class AlreadyReversedError(LedgerError):
    """Ledger row was reversed before."""

    status_code = 409


class NotFoundError(LedgerError):
    status_code = 404


class PersistenceError(LedgerError):
    """Store unavailable or transaction aborted. Never retried for writes."""

    status_code = 503
