# app/referrals/model.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from app.payouts.model import BankDetails


# earning review status
EARNING_PENDING = "pending"
EARNING_APPROVED = "approved"
EARNING_REJECTED = "rejected"

# earning payment status
UNPAID = "unpaid"
REQUESTED = "requested"
PAID = "paid"

# N100 floor for the configurable minimum
MIN_PAYOUT_FLOOR_KOBO = 10_000


@dataclass(frozen=True)
class ReferralEarning:
    id: UUID
    referrer_id: UUID
    referred_user_id: UUID
    order_id: str
    order_total_kobo: int
    percentage: float
    amount_kobo: int
    status: str
    payment_status: str
    created_at: datetime
    payout_id: Optional[UUID] = None
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class ReferralProgramSettings:
    min_payout_kobo: int
    referral_percentage: float
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ReferrerAccount:
    owner_id: UUID
    bank_details: BankDetails
    verified: bool = False
    verified_at: Optional[datetime] = None


@dataclass(frozen=True)
class Eligibility:
    owner_id: UUID
    eligible_total_kobo: int
    min_payout_kobo: int
    earning_count: int
    has_open_payout: bool
    bank_details_complete: bool
    bank_verified: bool

    @property
    def eligible(self) -> bool:
        return (
            self.eligible_total_kobo >= self.min_payout_kobo
            and self.bank_details_complete
            and not self.has_open_payout
        )


def commission_kobo(order_total_kobo: int, percentage: float) -> int:
    """Half-up rounding to the nearest kobo."""
    raw = Decimal(order_total_kobo) * Decimal(str(percentage)) / Decimal(100)
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class EarningQuery:
    status: Optional[str] = None
    payment_status: Optional[str] = None
    referrer_id: Optional[UUID] = None
    page: int = 1
    limit: int = 20


@dataclass(frozen=True)
class EarningPage:
    earnings: list[ReferralEarning]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class ReferralStats:
    """Per-referrer totals in kobo; counts are earnings, not payouts."""

    owner_id: UUID
    total_earned_kobo: int
    available_kobo: int
    requested_kobo: int
    paid_kobo: int
    pending_count: int
    approved_count: int
    rejected_count: int
    paid_count: int


def referral_stats(owner_id: UUID, earnings: list[ReferralEarning]) -> ReferralStats:
    approved = [e for e in earnings if e.status == EARNING_APPROVED]
    return ReferralStats(
        owner_id=owner_id,
        total_earned_kobo=sum(e.amount_kobo for e in approved),
        available_kobo=sum(e.amount_kobo for e in approved if e.payment_status == UNPAID),
        requested_kobo=sum(e.amount_kobo for e in approved if e.payment_status == REQUESTED),
        paid_kobo=sum(e.amount_kobo for e in approved if e.payment_status == PAID),
        pending_count=sum(1 for e in earnings if e.status == EARNING_PENDING),
        approved_count=len(approved),
        rejected_count=sum(1 for e in earnings if e.status == EARNING_REJECTED),
        paid_count=sum(1 for e in approved if e.payment_status == PAID),
    )
