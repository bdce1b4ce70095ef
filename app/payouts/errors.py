# app/payouts/errors.py
from __future__ import annotations


class PayoutError(Exception):
    code = "PAYOUT_ERROR"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class PayoutNotFound(PayoutError):
    code = "PAYOUT_NOT_FOUND"


class InvalidState(PayoutError):
    """Operation is not valid for the payout's current status."""

    code = "INVALID_STATE"


class AlreadyProcessed(PayoutError):
    """Payout left `pending` already, or another writer won the race."""

    code = "ALREADY_PROCESSED"


class GatewayUnavailable(PayoutError):
    """Transient gateway failure (timeout, connection, 5xx). Safe to retry."""

    code = "GATEWAY_UNAVAILABLE"
    retryable = True


class InvalidCode(PayoutError):
    code = "INVALID_CODE"


class ValidationError(PayoutError):
    code = "VALIDATION_ERROR"


class EarningNotFound(PayoutError):
    code = "EARNING_NOT_FOUND"
