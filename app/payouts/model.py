

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Any
from uuid import UUID
from datetime import datetime


# status
PENDING = "pending"
PROCESSING = "processing"
OTP = "otp"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

OPEN_STATUSES = (PENDING, OTP, PROCESSING)

# payment_status (gateway view)
PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"


@dataclass(frozen=True)
class BankDetails:
    account_name: str
    account_number: str
    bank_code: str

    def is_complete(self) -> bool:
        return bool(
            (self.account_name or "").strip()
            and (self.account_number or "").strip()
            and (self.bank_code or "").strip()
        )


@dataclass(frozen=True)
class TransferAttempt:
    number: int
    reference: str
    transfer_code: Optional[str]
    requires_otp: bool
    started_at: datetime
    outcome: Optional[str] = None  # None while the attempt is live
    resolved_at: Optional[datetime] = None


@dataclass(frozen=True)
class PayoutRequest:
    id: UUID
    owner_id: UUID
    amount_kobo: int
    bank_details: BankDetails
    status: str
    payment_status: str
    requested_at: datetime
    paystack_reference: Optional[str] = None
    transfer_code: Optional[str] = None
    processed_at: Optional[datetime] = None
    manual_reference: Optional[str] = None
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attempts: tuple[TransferAttempt, ...] = ()
    earning_ids: tuple[UUID, ...] = ()

    @property
    def active_attempt(self) -> Optional[TransferAttempt]:
        if self.attempts and self.attempts[-1].outcome is None:
            return self.attempts[-1]
        return None

    @property
    def active_reference(self) -> Optional[str]:
        attempt = self.active_attempt
        if attempt is not None and attempt.reference:
            return attempt.reference
        return None


@dataclass(frozen=True)
class PayoutEvent:
    payout_id: UUID
    action: str
    actor: Optional[str]
    from_status: Optional[str]
    to_status: Optional[str]
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None


@dataclass(frozen=True)
class PayoutQuery:
    status: Optional[str] = None
    payment_status: Optional[str] = None
    owner_id: Optional[UUID] = None
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: int = 10


@dataclass(frozen=True)
class PayoutPage:
    payouts: list[PayoutRequest]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
