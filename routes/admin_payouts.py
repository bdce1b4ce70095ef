# routes/admin_payouts.py
from datetime import date, datetime, time, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query

from app.payouts.commands import PayoutCommand, dispatch
from app.payouts.lifecycle import PayoutLifecycle
from app.payouts.model import PayoutQuery
from app.payouts.repository import PayoutStore
from app.workers.status_poller import DEFAULT_BATCH_SIZE, poll_once
from deps.admin import require_admin
from deps.auth import CurrentUser
from deps.services import get_lifecycle, get_payout_store
from schemas import (
    PaymentStatus,
    PayoutEventOut,
    PayoutListOut,
    PayoutOut,
    PayoutStatus,
    PollSummaryOut,
)

router = APIRouter(prefix="/v1/admin/payouts", tags=["admin-payouts"])


def _day(d: Optional[date]) -> Optional[datetime]:
    if d is None:
        return None
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


@router.get("", response_model=PayoutListOut)
def admin_list_payouts(
    status: Optional[PayoutStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    owner_id: Optional[UUID] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    admin: CurrentUser = Depends(require_admin),
    store: PayoutStore = Depends(get_payout_store),
):
    query = PayoutQuery(
        status=status,
        payment_status=payment_status,
        owner_id=owner_id,
        search=(search or "").strip() or None,
        start_date=_day(start_date),
        end_date=_day(end_date),
        page=page,
        limit=limit,
    )
    return PayoutListOut.from_domain(store.list(query))


@router.post("/poll-once", response_model=PollSummaryOut)
def admin_poll_once(
    batch_size: int = Query(default=DEFAULT_BATCH_SIZE, ge=1, le=500),
    admin: CurrentUser = Depends(require_admin),
    lifecycle: PayoutLifecycle = Depends(get_lifecycle),
    store: PayoutStore = Depends(get_payout_store),
):
    return PollSummaryOut.model_validate(poll_once(lifecycle, store, batch_size=batch_size))


@router.get("/{payout_id}", response_model=PayoutOut)
def admin_get_payout(
    payout_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    lifecycle: PayoutLifecycle = Depends(get_lifecycle),
):
    return PayoutOut.from_domain(lifecycle.get(payout_id))


@router.get("/{payout_id}/events", response_model=List[PayoutEventOut])
def admin_payout_events(
    payout_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    lifecycle: PayoutLifecycle = Depends(get_lifecycle),
    store: PayoutStore = Depends(get_payout_store),
):
    lifecycle.get(payout_id)
    return [PayoutEventOut.from_domain(e) for e in store.list_events(payout_id)]


@router.post("/{payout_id}/actions", response_model=PayoutOut)
def admin_payout_action(
    payout_id: UUID,
    cmd: PayoutCommand = Body(...),
    admin: CurrentUser = Depends(require_admin),
    lifecycle: PayoutLifecycle = Depends(get_lifecycle),
):
    payout = dispatch(lifecycle, payout_id, cmd, actor=str(admin.user_id))
    return PayoutOut.from_domain(payout)
