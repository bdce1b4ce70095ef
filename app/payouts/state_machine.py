# app/payouts/state_machine.py
from __future__ import annotations

from app.payouts.model import (
    CANCELLED,
    COMPLETED,
    FAILED,
    OTP,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_SUCCESS,
    PENDING,
    PROCESSING,
    PayoutRequest,
)


class InvalidTransition(Exception):
    pass


ALLOWED = {
    PENDING: {PROCESSING, OTP, COMPLETED, CANCELLED},
    OTP: {PROCESSING, OTP},  # OTP->OTP on resend
    PROCESSING: {COMPLETED, FAILED},
    FAILED: {PENDING},
    COMPLETED: set(),
    CANCELLED: set(),
}

PAYMENT_STATUS_FOR = {
    PENDING: PAYMENT_PENDING,
    OTP: PAYMENT_PROCESSING,
    PROCESSING: PAYMENT_PROCESSING,
    COMPLETED: PAYMENT_SUCCESS,
    FAILED: PAYMENT_FAILED,
    CANCELLED: PAYMENT_PENDING,
}

RESOLVED_STATUSES = (COMPLETED, FAILED)


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payout transition: {old} -> {new}")


def assert_consistent(payout: PayoutRequest) -> None:
    """
    Invariant: payment_status follows status, and processed_at is set
    exactly when the payout resolved as completed or failed.
    """
    expected = PAYMENT_STATUS_FOR.get(payout.status)
    if expected is None:
        raise ValueError(f"Invariant violation: unknown status={payout.status}")
    if payout.payment_status != expected:
        raise ValueError(
            f"Invariant violation: status={payout.status} requires payment_status={expected}, "
            f"got {payout.payment_status}"
        )
    resolved = payout.status in RESOLVED_STATUSES
    if resolved and payout.processed_at is None:
        raise ValueError(f"Invariant violation: status={payout.status} requires processed_at")
    if not resolved and payout.processed_at is not None:
        raise ValueError(f"Invariant violation: status={payout.status} must not carry processed_at")


def assert_reference_unchanged(old: PayoutRequest, new: PayoutRequest) -> None:
    """
    Invariant: paystack_reference is append-only (None -> value, never value -> other).
    """
    if old.paystack_reference and new.paystack_reference != old.paystack_reference:
        raise ValueError(
            "Invariant violation: paystack_reference is immutable once set "
            f"({old.paystack_reference!r} -> {new.paystack_reference!r})"
        )
