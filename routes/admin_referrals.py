# routes/admin_referrals.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.referrals.model import EarningQuery
from app.referrals.service import ReferralService
from deps.admin import require_admin
from deps.auth import CurrentUser
from deps.services import get_referrals
from schemas import (
    EarningIn,
    EarningListOut,
    EarningOut,
    EarningPaymentStatus,
    EarningStatus,
    ReferralSettingsIn,
    ReferralSettingsOut,
)

router = APIRouter(prefix="/v1/admin/referrals", tags=["admin-referrals"])


@router.get("/settings", response_model=ReferralSettingsOut)
def admin_get_referral_settings(
    admin: CurrentUser = Depends(require_admin),
    referrals: ReferralService = Depends(get_referrals),
):
    return ReferralSettingsOut.from_domain(referrals.get_settings())


@router.put("/settings", response_model=ReferralSettingsOut)
def admin_update_referral_settings(
    body: ReferralSettingsIn,
    admin: CurrentUser = Depends(require_admin),
    referrals: ReferralService = Depends(get_referrals),
):
    s = referrals.update_settings(
        min_payout_kobo=body.min_payout_kobo,
        referral_percentage=body.referral_percentage,
    )
    return ReferralSettingsOut.from_domain(s)


@router.get("/earnings", response_model=EarningListOut)
def admin_list_earnings(
    status: Optional[EarningStatus] = Query(default=None),
    payment_status: Optional[EarningPaymentStatus] = Query(default=None),
    referrer_id: Optional[UUID] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    admin: CurrentUser = Depends(require_admin),
    referrals: ReferralService = Depends(get_referrals),
):
    query = EarningQuery(
        status=status,
        payment_status=payment_status,
        referrer_id=referrer_id,
        page=page,
        limit=limit,
    )
    return EarningListOut.from_domain(referrals.search_earnings(query))


@router.post("/earnings", response_model=EarningOut, status_code=201)
def admin_record_earning(
    body: EarningIn,
    admin: CurrentUser = Depends(require_admin),
    referrals: ReferralService = Depends(get_referrals),
):
    earning = referrals.record_earning(
        referrer_id=body.referrer_id,
        referred_user_id=body.referred_user_id,
        order_id=body.order_id,
        order_total_kobo=body.order_total_kobo,
    )
    return EarningOut.from_domain(earning)


@router.post("/earnings/{earning_id}/approve", response_model=EarningOut)
def admin_approve_earning(
    earning_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    referrals: ReferralService = Depends(get_referrals),
):
    return EarningOut.from_domain(referrals.approve_earning(earning_id))


@router.post("/earnings/{earning_id}/reject", response_model=EarningOut)
def admin_reject_earning(
    earning_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    referrals: ReferralService = Depends(get_referrals),
):
    return EarningOut.from_domain(referrals.reject_earning(earning_id))
