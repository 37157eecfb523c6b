"""Domain errors raised by the service layer and rendered by the routes."""
from __future__ import annotations

from flask import jsonify


class DealSpotError(Exception):
    """Base error carrying everything needed to build a JSON error response."""

    status_code = 400
    error = "bad_request"

    def __init__(self, message: str, *, error: str | None = None, details: dict[str, object] | None = None):
        super().__init__(message)
        self.message = message
        if error:
            self.error = error
        self.details = details or {}

    def to_response(self):
        body = {"error": self.error, "message": self.message}
        body.update(self.details)
        return jsonify(body), self.status_code


class NotFoundError(DealSpotError):
    status_code = 404
    error = "not_found"


class StateConflictError(DealSpotError):
    """The entity exists but is not in the state the operation requires."""

    status_code = 409
    error = "conflict"


class OwnershipError(StateConflictError):
    """A voucher was presented at a business it does not belong to."""

    status_code = 403
    error = "wrong_business"


class ConstraintViolationError(DealSpotError):
    status_code = 409
    error = "constraint_violation"


class ValidationError(DealSpotError):
    status_code = 400
    error = "validation_error"


class QuotaExceededError(DealSpotError):
    status_code = 402
    error = "quota_exceeded"


class PaymentFailedError(DealSpotError):
    status_code = 402
    error = "payment_failed"


class AuthError(DealSpotError):
    status_code = 401
    error = "unauthorized"


class ForbiddenError(DealSpotError):
    status_code = 403
    error = "forbidden"


class DownstreamFailure(DealSpotError):
    """A side effect failed after the primary write committed.

    Redemption logs it and still succeeds. Payout settlement reports it as 502.
    """

    status_code = 500
    error = "downstream_failure"
