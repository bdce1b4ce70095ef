# app/referrals/service.py
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from app.payouts.errors import (
    AlreadyProcessed,
    EarningNotFound,
    InvalidState,
    ValidationError,
)
from app.payouts.model import (
    CANCELLED,
    COMPLETED,
    PAYMENT_PENDING,
    PENDING,
    BankDetails,
    PayoutRequest,
)
from app.payouts.repository import PayoutStore
from app.providers.base import GatewayRejected, PaymentGateway
from app.referrals.model import (
    EARNING_APPROVED,
    EARNING_PENDING,
    EARNING_REJECTED,
    MIN_PAYOUT_FLOOR_KOBO,
    UNPAID,
    EarningPage,
    EarningQuery,
    Eligibility,
    ReferralEarning,
    ReferralProgramSettings,
    ReferralStats,
    ReferrerAccount,
    commission_kobo,
    referral_stats,
)
from app.referrals.repository import ReferralStore
from services.redaction import mask_account_number

logger = logging.getLogger("payouts.referrals")

_ACCOUNT_NUMBER_RE = re.compile(r"^\d{10}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReferralService:
    """
    Referral earnings, program settings and payout requests.

    Also the earnings ledger for PayoutLifecycle: settle_payout() marks a
    completed payout's earnings paid and returns a cancelled payout's
    earnings to the pool.
    """

    def __init__(
        self,
        store: ReferralStore,
        payouts: PayoutStore,
        gateway: PaymentGateway,
        *,
        default_min_payout_kobo: int = 500_000,
        default_percentage: float = 1.5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.payouts = payouts
        self.gateway = gateway
        self.default_min_payout_kobo = default_min_payout_kobo
        self.default_percentage = default_percentage
        self.clock = clock

    # -----------------------
    # settings
    # -----------------------
    def get_settings(self) -> ReferralProgramSettings:
        s = self.store.get_settings()
        if s is None:
            return ReferralProgramSettings(
                min_payout_kobo=self.default_min_payout_kobo,
                referral_percentage=self.default_percentage,
            )
        return s

    def update_settings(self, *, min_payout_kobo: int, referral_percentage: float) -> ReferralProgramSettings:
        if min_payout_kobo < MIN_PAYOUT_FLOOR_KOBO:
            raise ValidationError("Minimum payout must be at least N100")
        if not (0 <= referral_percentage <= 100):
            raise ValidationError("Referral percentage must be between 0-100%")

        s = ReferralProgramSettings(
            min_payout_kobo=int(min_payout_kobo),
            referral_percentage=float(referral_percentage),
            updated_at=self.clock(),
        )
        self.store.save_settings(s)
        logger.info("referral settings updated min_payout_kobo=%s percentage=%s", s.min_payout_kobo, s.referral_percentage)
        return s

    # -----------------------
    # earnings
    # -----------------------
    def record_earning(
        self,
        *,
        referrer_id: UUID,
        referred_user_id: UUID,
        order_id: str,
        order_total_kobo: int,
    ) -> ReferralEarning:
        if referrer_id == referred_user_id:
            raise ValidationError("A user cannot refer themselves")
        if order_total_kobo <= 0:
            raise ValidationError("Order total must be positive")
        order_id = (order_id or "").strip()
        if not order_id:
            raise ValidationError("order_id is required")

        pct = self.get_settings().referral_percentage
        earning = ReferralEarning(
            id=uuid4(),
            referrer_id=referrer_id,
            referred_user_id=referred_user_id,
            order_id=order_id,
            order_total_kobo=order_total_kobo,
            percentage=pct,
            amount_kobo=commission_kobo(order_total_kobo, pct),
            status=EARNING_PENDING,
            payment_status=UNPAID,
            created_at=self.clock(),
        )
        try:
            self.store.add_earning(earning)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        logger.info("earning recorded referrer=%s order=%s amount_kobo=%s", referrer_id, order_id, earning.amount_kobo)
        return earning

    def approve_earning(self, earning_id: UUID) -> ReferralEarning:
        return self._review(earning_id, EARNING_APPROVED)

    def reject_earning(self, earning_id: UUID) -> ReferralEarning:
        return self._review(earning_id, EARNING_REJECTED)

    def _review(self, earning_id: UUID, status: str) -> ReferralEarning:
        current = self.store.get_earning(earning_id)
        if current is None:
            raise EarningNotFound(f"Earning {earning_id} not found")
        if current.status != EARNING_PENDING:
            raise InvalidState(f"Earning is already {current.status}")

        updated = self.store.set_earning_status(earning_id, expected=EARNING_PENDING, status=status)
        if updated is None:
            raise AlreadyProcessed("Earning was reviewed by another request")
        return updated

    def list_earnings(self, owner_id: UUID) -> list[ReferralEarning]:
        return self.store.list_earnings(owner_id)

    def search_earnings(self, query: EarningQuery) -> EarningPage:
        return self.store.search_earnings(query)

    def stats(self, owner_id: UUID) -> ReferralStats:
        return referral_stats(owner_id, self.store.list_earnings(owner_id))

    # -----------------------
    # bank details
    # -----------------------
    def get_account(self, owner_id: UUID) -> Optional[ReferrerAccount]:
        return self.store.get_account(owner_id)

    def update_bank_details(self, owner_id: UUID, *, account_number: str, bank_code: str) -> ReferrerAccount:
        account_number = (account_number or "").strip()
        bank_code = (bank_code or "").strip()
        if not _ACCOUNT_NUMBER_RE.match(account_number):
            raise ValidationError("Account number must be 10 digits")
        if not bank_code:
            raise ValidationError("bank_code is required")

        try:
            account_name = self.gateway.resolve_account(account_number=account_number, bank_code=bank_code)
        except GatewayRejected as exc:
            raise ValidationError(f"Could not verify bank account: {exc.message}") from exc

        account = ReferrerAccount(
            owner_id=owner_id,
            bank_details=BankDetails(
                account_name=account_name,
                account_number=account_number,
                bank_code=bank_code,
            ),
            verified=True,
            verified_at=self.clock(),
        )
        self.store.save_account(account)
        logger.info("bank details verified owner=%s account=%s", owner_id, mask_account_number(account_number))
        return account

    # -----------------------
    # payouts
    # -----------------------
    def check_eligibility(self, owner_id: UUID) -> Eligibility:
        earnings = self.store.eligible_earnings(owner_id)
        account = self.store.get_account(owner_id)
        return Eligibility(
            owner_id=owner_id,
            eligible_total_kobo=sum(e.amount_kobo for e in earnings),
            min_payout_kobo=self.get_settings().min_payout_kobo,
            earning_count=len(earnings),
            has_open_payout=self.payouts.has_open_payout(owner_id),
            bank_details_complete=bool(account and account.bank_details.is_complete()),
            bank_verified=bool(account and account.verified),
        )

    def request_payout(self, owner_id: UUID) -> PayoutRequest:
        if self.payouts.has_open_payout(owner_id):
            raise InvalidState("A payout request is already awaiting processing")

        account = self.store.get_account(owner_id)
        if account is None or not account.bank_details.account_number:
            raise ValidationError("Bank details not set up")
        if not account.bank_details.is_complete():
            raise ValidationError("Bank details incomplete")

        earnings = self.store.eligible_earnings(owner_id)
        total = sum(e.amount_kobo for e in earnings)
        minimum = self.get_settings().min_payout_kobo
        if not earnings or total < minimum:
            raise ValidationError(f"Minimum payout is {minimum} kobo; {total} kobo eligible")

        now = self.clock()
        payout_id = uuid4()
        earning_ids = [e.id for e in earnings]

        if self.store.reserve_earnings(owner_id, earning_ids, payout_id) != len(earning_ids):
            raise AlreadyProcessed("Earnings changed while the payout was being requested")

        payout = PayoutRequest(
            id=payout_id,
            owner_id=owner_id,
            amount_kobo=total,
            bank_details=account.bank_details,
            status=PENDING,
            payment_status=PAYMENT_PENDING,
            requested_at=now,
            updated_at=now,
            earning_ids=tuple(earning_ids),
        )
        try:
            self.payouts.create(payout)
        except Exception:
            self.store.release(payout_id)
            raise

        logger.info("payout requested owner=%s payout=%s amount_kobo=%s earnings=%s", owner_id, payout_id, total, len(earning_ids))
        return payout

    def settle_payout(self, payout: PayoutRequest) -> None:
        if payout.status == COMPLETED:
            n = self.store.mark_paid(payout.id, payout.processed_at or self.clock())
            logger.info("payout=%s completed; %s earnings marked paid", payout.id, n)
        elif payout.status == CANCELLED:
            n = self.store.release(payout.id)
            logger.info("payout=%s cancelled; %s earnings released", payout.id, n)

    def settle_outstanding(self) -> int:
        """
        Settle earnings still marked requested whose payout has already
        completed or been cancelled. Returns the number of payouts settled.
        """
        settled = 0
        for payout_id in self.store.requested_payout_ids():
            payout = self.payouts.get(payout_id)
            if payout is None or payout.status not in (COMPLETED, CANCELLED):
                continue
            self.settle_payout(payout)
            settled += 1
        if settled:
            logger.info("settled earnings for %s resolved payouts", settled)
        return settled
