# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Literal

from app.payouts.model import BankDetails

# normalized gateway view of a transfer
TransferState = Literal["otp", "pending", "success", "failed", "not_found"]


@dataclass(frozen=True)
class TransferInit:
    reference: Optional[str]
    transfer_code: Optional[str]
    requires_otp: bool
    status: TransferState
    response: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class TransferStatus:
    status: TransferState
    reference: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("success", "failed", "not_found")


class GatewayRejected(Exception):
    """
    Gateway answered and refused the request (4xx business error).
    Distinct from GatewayUnavailable, which means no usable answer.
    """

    def __init__(self, message: str, *, http_status: int | None = None, response: Any = None):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.response = response


class PaymentGateway(Protocol):
    def create_transfer(
        self,
        *,
        bank_details: BankDetails,
        amount_kobo: int,
        reference: str,
        reason: str,
    ) -> TransferInit: ...

    def finalize_transfer(self, *, transfer_code: str, otp: str) -> TransferStatus: ...

    def resend_otp(self, *, transfer_code: str) -> None: ...

    def get_transfer_status(self, reference: str) -> TransferStatus: ...

    def resolve_account(self, *, account_number: str, bank_code: str) -> str: ...


def map_transfer_status(status_raw: str | None) -> TransferState:
    st = (status_raw or "").strip().lower()
    if st in ("success", "successful", "completed", "paid"):
        return "success"
    if st in ("failed", "reversed", "rejected", "abandoned", "blocked", "cancelled", "canceled"):
        return "failed"
    if st == "otp":
        return "otp"
    # queued / pending / received / unknown => still in flight
    return "pending"
