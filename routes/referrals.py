# routes/referrals.py
from typing import List

from fastapi import APIRouter, Depends, Query

from app.payouts.model import PayoutQuery
from app.payouts.repository import PayoutStore
from app.referrals.service import ReferralService
from deps.auth import CurrentUser, get_current_user
from deps.services import get_payout_store, get_referrals
from schemas import (
    BankDetailsIn,
    EarningOut,
    EligibilityOut,
    PayoutListOut,
    PayoutOut,
    ReferralStatsOut,
    ReferrerAccountOut,
)

router = APIRouter(prefix="/v1/referrals/me", tags=["referrals"])


@router.get("/eligibility", response_model=EligibilityOut)
def my_eligibility(
    user: CurrentUser = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referrals),
):
    return EligibilityOut.from_domain(referrals.check_eligibility(user.user_id))


@router.get("/stats", response_model=ReferralStatsOut)
def my_stats(
    user: CurrentUser = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referrals),
):
    return ReferralStatsOut.from_domain(referrals.stats(user.user_id))


@router.get("/earnings", response_model=List[EarningOut])
def my_earnings(
    user: CurrentUser = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referrals),
):
    return [EarningOut.from_domain(e) for e in referrals.list_earnings(user.user_id)]


@router.put("/bank-details", response_model=ReferrerAccountOut)
def update_my_bank_details(
    body: BankDetailsIn,
    user: CurrentUser = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referrals),
):
    account = referrals.update_bank_details(
        user.user_id,
        account_number=body.account_number,
        bank_code=body.bank_code,
    )
    return ReferrerAccountOut.from_domain(account)


@router.post("/payouts", response_model=PayoutOut, status_code=201)
def request_my_payout(
    user: CurrentUser = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referrals),
):
    return PayoutOut.from_domain(referrals.request_payout(user.user_id))


@router.get("/payouts", response_model=PayoutListOut)
def list_my_payouts(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    store: PayoutStore = Depends(get_payout_store),
):
    return PayoutListOut.from_domain(store.list(PayoutQuery(owner_id=user.user_id, page=page, limit=limit)))
