"""
Domain error taxonomy.

Services raise these; the API layer converts every DomainError into the same
JSON shape (see app.api.exception_handlers). The `code` is the stable,
machine-readable name a client can switch on.
"""

from typing import Optional


class DomainError(Exception):
    """Base domain error with message, HTTP status and error code."""

    status_code: int = 400
    code: str = "domain_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"


class WebhookSignatureError(ValidationError):
    code = "invalid_signature"


class Unauthorized(DomainError):
    status_code = 401
    code = "unauthorized"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class Conflict(DomainError):
    status_code = 409
    code = "conflict"


class SpotConflict(Conflict):
    """Raised by the registry when a requested spot number is already claimed."""

    code = "spot_conflict"

    def __init__(self, message: str, spots: Optional[list[int]] = None):
        super().__init__(message)
        self.spots = spots or []


class SpotsUnavailable(Conflict):
    code = "spots_unavailable"


class AlreadyProcessed(Conflict):
    code = "already_processed"


class PayoutInProgress(Conflict):
    code = "payout_in_progress"


class NotConfigured(Conflict):
    code = "not_configured"


class Overbooking(Conflict):
    code = "overbooking"


class Discrepancy(DomainError):
    status_code = 422
    code = "discrepancy"


class GatewayError(DomainError):
    status_code = 502
    code = "gateway_error"


class Internal(DomainError):
    status_code = 500
    code = "internal_error"
