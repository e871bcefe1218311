# Overview: Exception taxonomy shared by the reconciliation services.

from __future__ import annotations


class LedgerError(Exception):
    """Base class for edition ledger domain errors."""
    pass


class ExternalServiceError(LedgerError):
    """Warehouse provider returned an error that retrying will not fix."""
    pass


class TransientExternalError(ExternalServiceError):
    """Network error, timeout, 5xx or rate limit from the warehouse provider."""
    pass


class MalformedInputError(LedgerError):
    """Order or line item payload is missing required fields."""

    def __init__(self, message: str, *, line_item_id: str | None = None):
        super().__init__(message)
        self.line_item_id = line_item_id


class LineItemNotFound(LedgerError):
    """Raised when a command or lookup names an unknown line item."""
    pass


class ConcurrencyConflict(LedgerError):
    """A per-product reassignment could not obtain exclusive access."""
    pass


class IntegrityViolation(LedgerError):
    """
    Raised only when a caller asks for strict validation.

    Carries the issue report; the ledger never auto-corrects ownership data.
    """

    def __init__(self, issues: list):
        self.issues = list(issues)
        super().__init__(f"{len(self.issues)} integrity issue(s) found")
