# schemas.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from typing import Any, Optional, List, Literal

from app.payouts.model import PayoutEvent, PayoutPage, PayoutRequest
from app.referrals.model import (
    EarningPage,
    Eligibility,
    ReferralEarning,
    ReferralProgramSettings,
    ReferralStats,
    ReferrerAccount,
)

PayoutStatus = Literal["pending", "processing", "otp", "completed", "failed", "cancelled"]
PaymentStatus = Literal["pending", "processing", "success", "failed"]
EarningStatus = Literal["pending", "approved", "rejected"]
EarningPaymentStatus = Literal["unpaid", "requested", "paid"]


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class _In(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# -------- PAYOUTS --------
class BankDetailsOut(_Out):
    account_name: str
    account_number: str
    bank_code: str


class TransferAttemptOut(_Out):
    number: int
    reference: str
    transfer_code: Optional[str] = None
    requires_otp: bool
    outcome: Optional[str] = None
    started_at: datetime
    resolved_at: Optional[datetime] = None


class PayoutOut(_Out):
    id: UUID
    owner_id: UUID
    amount_kobo: int
    bank_details: BankDetailsOut
    status: PayoutStatus
    payment_status: PaymentStatus
    paystack_reference: Optional[str] = None
    transfer_code: Optional[str] = None
    manual_reference: Optional[str] = None
    last_error: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attempts: List[TransferAttemptOut] = []
    earning_ids: List[UUID] = []

    @classmethod
    def from_domain(cls, p: PayoutRequest) -> "PayoutOut":
        return cls.model_validate(p)


class PayoutListOut(BaseModel):
    payouts: List[PayoutOut]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_domain(cls, page: PayoutPage) -> "PayoutListOut":
        return cls(
            payouts=[PayoutOut.from_domain(p) for p in page.payouts],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class PayoutEventOut(_Out):
    action: str
    actor: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    created_at: datetime
    metadata: dict[str, Any] = {}
    request_id: Optional[str] = None

    @classmethod
    def from_domain(cls, e: PayoutEvent) -> "PayoutEventOut":
        return cls.model_validate(e)


class PollSummaryOut(_Out):
    checked: int
    completed: int
    failed: int
    unchanged: int
    errors: int
    settled: int = 0
    error_ids: List[str] = []


# -------- REFERRALS --------
class ReferralSettingsIn(_In):
    min_payout_kobo: int = Field(ge=10_000)
    referral_percentage: float = Field(ge=0, le=100)


class ReferralSettingsOut(_Out):
    min_payout_kobo: int
    referral_percentage: float
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, s: ReferralProgramSettings) -> "ReferralSettingsOut":
        return cls.model_validate(s)


class EarningIn(_In):
    referrer_id: UUID
    referred_user_id: UUID
    order_id: str = Field(min_length=1, max_length=100)
    order_total_kobo: int = Field(gt=0)


class EarningOut(_Out):
    id: UUID
    referrer_id: UUID
    referred_user_id: UUID
    order_id: str
    order_total_kobo: int
    percentage: float
    amount_kobo: int
    status: str
    payment_status: str
    payout_id: Optional[UUID] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, e: ReferralEarning) -> "EarningOut":
        return cls.model_validate(e)


class EarningListOut(BaseModel):
    earnings: List[EarningOut]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_domain(cls, page: EarningPage) -> "EarningListOut":
        return cls(
            earnings=[EarningOut.from_domain(e) for e in page.earnings],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class ReferralStatsOut(_Out):
    owner_id: UUID
    total_earned_kobo: int
    available_kobo: int
    requested_kobo: int
    paid_kobo: int
    pending_count: int
    approved_count: int
    rejected_count: int
    paid_count: int

    @classmethod
    def from_domain(cls, s: ReferralStats) -> "ReferralStatsOut":
        return cls.model_validate(s)


class BankDetailsIn(_In):
    account_number: str = Field(pattern=r"^\d{10}$")
    bank_code: str = Field(min_length=1, max_length=20)


class ReferrerAccountOut(_Out):
    owner_id: UUID
    bank_details: BankDetailsOut
    verified: bool
    verified_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, a: ReferrerAccount) -> "ReferrerAccountOut":
        return cls.model_validate(a)


class EligibilityOut(BaseModel):
    owner_id: UUID
    eligible: bool
    eligible_total_kobo: int
    min_payout_kobo: int
    earning_count: int
    has_open_payout: bool
    bank_details_complete: bool
    bank_verified: bool

    @classmethod
    def from_domain(cls, e: Eligibility) -> "EligibilityOut":
        return cls(
            owner_id=e.owner_id,
            eligible=e.eligible,
            eligible_total_kobo=e.eligible_total_kobo,
            min_payout_kobo=e.min_payout_kobo,
            earning_count=e.earning_count,
            has_open_payout=e.has_open_payout,
            bank_details_complete=e.bank_details_complete,
            bank_verified=e.bank_verified,
        )
