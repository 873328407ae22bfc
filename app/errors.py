"""Error taxonomy translated to HTTP responses in app.main."""

from typing import Any, Optional


class RiskServiceError(Exception):
    """Base error carrying the HTTP status it maps to."""
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(RiskServiceError):
    """Missing or malformed required input."""
    status_code = 400


class NotFoundError(RiskServiceError):
    status_code = 404


class InternalError(RiskServiceError):
    status_code = 500


class StorageError(InternalError):
    """A store could not be read or written (e.g. lock timeout)."""
