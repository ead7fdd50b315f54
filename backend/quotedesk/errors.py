# Overview: Domain error taxonomy shared by services and routes.

"""
Order lifecycle errors.

Each error carries the HTTP status the API layer responds with, so routes can
map any of them with a single handler:

- ValidationError (400): bad input, rejected before any write
    - InvalidTransition: disallowed status change
    - PermissionDeniedError (403): coarse or row-level gate refused the actor
    - NotFoundError (404)
    - LinkExpiredError (410): signed download link past its TTL
- ConflictError (409): business rule conflict
    - StaleWriteError: expected_version no longer matches the stored order
- PersistenceError (500): store write failed, transaction rolled back
- ExternalServiceError (502): document store or mail channel failed
- TaskTimeout (504): background task did not finish in time
"""

from __future__ import annotations


class QuoteDeskError(Exception):
    """Base class for domain errors."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        data = {"error": str(self)}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(QuoteDeskError, ValueError):
    """400-level input problem."""
    status_code = 400


class InvalidTransition(ValidationError):
    """Raised when a status change is not in the allowed transition set."""


class PermissionDeniedError(ValidationError):
    """Raised when the actor lacks a permission or row access."""
    status_code = 403


class NotFoundError(ValidationError):
    status_code = 404


class ConflictError(QuoteDeskError, ValueError):
    """409-level business rule conflict."""
    status_code = 409


class StaleWriteError(ConflictError):
    """Raised when a mutation was prepared against an outdated order version."""


class PersistenceError(QuoteDeskError):
    """Underlying store write failure. Nothing was committed."""
    status_code = 500


class ExternalServiceError(QuoteDeskError):
    """Document store or notification channel failure."""
    status_code = 502


class TaskTimeout(QuoteDeskError):
    status_code = 504


class LinkExpiredError(ValidationError):
    """Signed download link is past its time-to-live."""
    status_code = 410
