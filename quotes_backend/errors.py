"""
Error taxonomy shared by the guard, the directory adapter and the quote store.

Each ServiceError carries the HTTP status it maps to and a short public
message. Anything more detailed belongs in the server log, never in the
response body.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, public_message: str | None = None):
        self.public_message = public_message or self.default_message
        super().__init__(self.public_message)


class Unauthenticated(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid request"

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Invalid value for {field}")


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class ProviderError(ServiceError):
    """Identity provider failure."""

    default_message = "Identity provider request failed"


class StoreError(ServiceError):
    """Relational store failure."""

    default_message = "Failed to access storage"


class InvalidToken(Exception):
    """Raised by identity provider adapters when a bearer token does not verify."""
