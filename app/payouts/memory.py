# app/payouts/memory.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, time, timezone
from typing import Iterator, Optional
from uuid import UUID

from app.payouts.errors import AlreadyProcessed, PayoutNotFound
from app.payouts.model import (
    OPEN_STATUSES,
    PayoutEvent,
    PayoutPage,
    PayoutQuery,
    PayoutRequest,
)


class _MemoryClaim:
    def __init__(self, store: "InMemoryPayoutStore", payout: PayoutRequest):
        self._store = store
        self.payout = payout

    def commit(self, updated: PayoutRequest, *, event: PayoutEvent) -> None:
        with self._store._lock:
            current = self._store._rows.get(updated.id)
            # compare-and-swap on the status we read when claiming
            if current is None or current.status != self.payout.status:
                raise AlreadyProcessed("Payout changed while it was being processed")
            self._store._rows[updated.id] = updated
            self._store._events.append(event)
        self.payout = updated


class InMemoryPayoutStore:
    """
    Process-local PayoutStore. One non-blocking lock per payout id gives the
    single-writer guarantee; used by tests and sandbox runs.
    """

    def __init__(self) -> None:
        self._rows: dict[UUID, PayoutRequest] = {}
        self._events: list[PayoutEvent] = []
        self._claims: dict[UUID, threading.Lock] = {}
        self._lock = threading.RLock()

    def create(self, payout: PayoutRequest) -> PayoutRequest:
        with self._lock:
            if payout.id in self._rows:
                raise ValueError(f"Duplicate payout id {payout.id}")
            self._rows[payout.id] = payout
        return payout

    def get(self, payout_id: UUID) -> Optional[PayoutRequest]:
        with self._lock:
            return self._rows.get(payout_id)

    def get_by_reference(self, reference: str) -> Optional[PayoutRequest]:
        with self._lock:
            for p in self._rows.values():
                if p.paystack_reference == reference:
                    return p
                if any(a.reference == reference for a in p.attempts):
                    return p
        return None

    def has_open_payout(self, owner_id: UUID) -> bool:
        with self._lock:
            return any(p.owner_id == owner_id and p.status in OPEN_STATUSES for p in self._rows.values())

    @contextmanager
    def claim(self, payout_id: UUID) -> Iterator[_MemoryClaim]:
        with self._lock:
            payout = self._rows.get(payout_id)
            if payout is None:
                raise PayoutNotFound(f"Payout {payout_id} not found")
            lock = self._claims.setdefault(payout_id, threading.Lock())

        if not lock.acquire(blocking=False):
            raise AlreadyProcessed("Payout is being processed by another request")
        try:
            with self._lock:
                payout = self._rows[payout_id]
            yield _MemoryClaim(self, payout)
        finally:
            lock.release()

    def list(self, query: PayoutQuery) -> PayoutPage:
        with self._lock:
            rows = [p for p in self._rows.values() if _matches(p, query)]

        rows.sort(key=lambda p: p.requested_at, reverse=True)
        page = max(1, query.page)
        start = (page - 1) * query.limit
        return PayoutPage(
            payouts=rows[start:start + query.limit],
            total=len(rows),
            page=page,
            limit=query.limit,
        )

    def list_events(self, payout_id: UUID) -> list[PayoutEvent]:
        with self._lock:
            return [e for e in self._events if e.payout_id == payout_id]


def day_bounds(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Whole UTC days, inclusive on both ends."""
    lo = datetime.combine(start.date(), time.min, tzinfo=timezone.utc)
    hi = datetime.combine(end.date(), time.max, tzinfo=timezone.utc)
    return lo, hi


def _matches(p: PayoutRequest, q: PayoutQuery) -> bool:
    if q.status and p.status != q.status:
        return False
    if q.payment_status and p.payment_status != q.payment_status:
        return False
    if q.owner_id and p.owner_id != q.owner_id:
        return False
    if q.search:
        needle = q.search.strip().lower()
        hay = (p.bank_details.account_name.lower(), p.bank_details.account_number)
        if not any(needle in h for h in hay):
            return False
    if q.start_date and q.end_date:
        lo, hi = day_bounds(q.start_date, q.end_date)
        requested = p.requested_at
        if requested.tzinfo is None:
            requested = requested.replace(tzinfo=timezone.utc)
        if not (lo <= requested <= hi):
            return False
    return True
