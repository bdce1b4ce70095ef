# app/referrals/memory.py
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Optional
from uuid import UUID

from app.referrals.model import (
    EARNING_APPROVED,
    PAID,
    REQUESTED,
    UNPAID,
    EarningPage,
    EarningQuery,
    ReferralEarning,
    ReferralProgramSettings,
    ReferrerAccount,
)


class InMemoryReferralStore:
    def __init__(self) -> None:
        self._earnings: dict[UUID, ReferralEarning] = {}
        self._accounts: dict[UUID, ReferrerAccount] = {}
        self._settings: Optional[ReferralProgramSettings] = None
        self._lock = threading.RLock()

    # settings
    def get_settings(self) -> Optional[ReferralProgramSettings]:
        with self._lock:
            return self._settings

    def save_settings(self, s: ReferralProgramSettings) -> ReferralProgramSettings:
        with self._lock:
            self._settings = s
        return s

    # accounts
    def get_account(self, owner_id: UUID) -> Optional[ReferrerAccount]:
        with self._lock:
            return self._accounts.get(owner_id)

    def save_account(self, account: ReferrerAccount) -> ReferrerAccount:
        with self._lock:
            self._accounts[account.owner_id] = account
        return account

    # earnings
    def add_earning(self, earning: ReferralEarning) -> ReferralEarning:
        with self._lock:
            for e in self._earnings.values():
                if e.referrer_id == earning.referrer_id and e.order_id == earning.order_id:
                    raise ValueError(f"Earning already recorded for order {earning.order_id}")
            self._earnings[earning.id] = earning
        return earning

    def get_earning(self, earning_id: UUID) -> Optional[ReferralEarning]:
        with self._lock:
            return self._earnings.get(earning_id)

    def set_earning_status(self, earning_id: UUID, *, expected: str, status: str) -> Optional[ReferralEarning]:
        with self._lock:
            e = self._earnings.get(earning_id)
            if e is None or e.status != expected:
                return None
            e = replace(e, status=status)
            self._earnings[earning_id] = e
            return e

    def list_earnings(self, referrer_id: UUID) -> list[ReferralEarning]:
        with self._lock:
            rows = [e for e in self._earnings.values() if e.referrer_id == referrer_id]
        return sorted(rows, key=lambda e: e.created_at)

    def search_earnings(self, query: EarningQuery) -> EarningPage:
        with self._lock:
            rows = [e for e in self._earnings.values() if _matches(e, query)]

        rows.sort(key=lambda e: e.created_at, reverse=True)
        page = max(1, query.page)
        start = (page - 1) * query.limit
        return EarningPage(earnings=rows[start:start + query.limit], total=len(rows), page=page, limit=query.limit)

    def eligible_earnings(self, referrer_id: UUID) -> list[ReferralEarning]:
        return [
            e
            for e in self.list_earnings(referrer_id)
            if e.status == EARNING_APPROVED and e.payment_status == UNPAID
        ]

    def reserve_earnings(self, referrer_id: UUID, earning_ids: list[UUID], payout_id: UUID) -> int:
        with self._lock:
            wanted = [self._earnings.get(eid) for eid in earning_ids]
            if any(
                e is None
                or e.referrer_id != referrer_id
                or e.status != EARNING_APPROVED
                or e.payment_status != UNPAID
                for e in wanted
            ):
                return 0
            for e in wanted:
                self._earnings[e.id] = replace(e, payment_status=REQUESTED, payout_id=payout_id)
            return len(wanted)

    def mark_paid(self, payout_id: UUID, paid_at: datetime) -> int:
        with self._lock:
            n = 0
            for e in list(self._earnings.values()):
                if e.payout_id == payout_id and e.payment_status == REQUESTED:
                    self._earnings[e.id] = replace(e, payment_status=PAID, paid_at=paid_at)
                    n += 1
            return n

    def requested_payout_ids(self) -> list[UUID]:
        with self._lock:
            ids = {e.payout_id for e in self._earnings.values() if e.payment_status == REQUESTED and e.payout_id}
        return sorted(ids, key=str)

    def release(self, payout_id: UUID) -> int:
        with self._lock:
            n = 0
            for e in list(self._earnings.values()):
                if e.payout_id == payout_id and e.payment_status == REQUESTED:
                    self._earnings[e.id] = replace(e, payment_status=UNPAID, payout_id=None)
                    n += 1
            return n


def _matches(e: ReferralEarning, q: EarningQuery) -> bool:
    if q.status and e.status != q.status:
        return False
    if q.payment_status and e.payment_status != q.payment_status:
        return False
    if q.referrer_id and e.referrer_id != q.referrer_id:
        return False
    return True
