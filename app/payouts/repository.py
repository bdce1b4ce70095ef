# app/payouts/repository.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, ContextManager, Iterator, Optional, Protocol
from uuid import UUID

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor

from db import get_conn
from app.payouts.errors import AlreadyProcessed, PayoutNotFound
from app.payouts.memory import day_bounds
from app.payouts.model import (
    OPEN_STATUSES,
    BankDetails,
    PayoutEvent,
    PayoutPage,
    PayoutQuery,
    PayoutRequest,
    TransferAttempt,
)


class PayoutClaim(Protocol):
    payout: PayoutRequest

    def commit(self, updated: PayoutRequest, *, event: PayoutEvent) -> None: ...


class PayoutStore(Protocol):
    def create(self, payout: PayoutRequest) -> PayoutRequest: ...
    def get(self, payout_id: UUID) -> Optional[PayoutRequest]: ...
    def get_by_reference(self, reference: str) -> Optional[PayoutRequest]: ...
    def has_open_payout(self, owner_id: UUID) -> bool: ...
    def claim(self, payout_id: UUID) -> ContextManager[PayoutClaim]: ...
    def list(self, query: PayoutQuery) -> PayoutPage: ...
    def list_events(self, payout_id: UUID) -> list[PayoutEvent]: ...


_PAYOUT_COLUMNS = """
  p.id,
  p.owner_id,
  p.amount_kobo,
  p.account_name,
  p.account_number,
  p.bank_code,
  p.status,
  p.payment_status,
  p.paystack_reference,
  p.transfer_code,
  p.manual_reference,
  p.last_error,
  p.requested_at,
  p.processed_at,
  p.last_attempt_at,
  p.updated_at,
  p.earning_ids
"""


# ==========================================================
# Row mapping
# ==========================================================

def _attempt_from_row(row: dict[str, Any]) -> TransferAttempt:
    return TransferAttempt(
        number=int(row["number"]),
        reference=row.get("reference"),
        transfer_code=row.get("transfer_code"),
        requires_otp=bool(row.get("requires_otp")),
        started_at=row["started_at"],
        outcome=row.get("outcome"),
        resolved_at=row.get("resolved_at"),
    )


def _payout_from_row(row: dict[str, Any], attempts: list[TransferAttempt]) -> PayoutRequest:
    return PayoutRequest(
        id=row["id"],
        owner_id=row["owner_id"],
        amount_kobo=int(row["amount_kobo"]),
        bank_details=BankDetails(
            account_name=row.get("account_name") or "",
            account_number=row.get("account_number") or "",
            bank_code=row.get("bank_code") or "",
        ),
        status=row["status"],
        payment_status=row["payment_status"],
        requested_at=row["requested_at"],
        paystack_reference=row.get("paystack_reference"),
        transfer_code=row.get("transfer_code"),
        processed_at=row.get("processed_at"),
        manual_reference=row.get("manual_reference"),
        last_error=row.get("last_error"),
        last_attempt_at=row.get("last_attempt_at"),
        updated_at=row.get("updated_at"),
        attempts=tuple(sorted(attempts, key=lambda a: a.number)),
        earning_ids=tuple(row.get("earning_ids") or ()),
    )


def _load_attempts(cur, payout_ids: list[UUID]) -> dict[UUID, list[TransferAttempt]]:
    out: dict[UUID, list[TransferAttempt]] = {pid: [] for pid in payout_ids}
    if not payout_ids:
        return out
    cur.execute(
        """
        SELECT payout_id, number, reference, transfer_code, requires_otp, outcome, started_at, resolved_at
        FROM app.payout_attempts
        WHERE payout_id = ANY(%s::uuid[])
        ORDER BY payout_id, number
        """,
        ([str(pid) for pid in payout_ids],),
    )
    for row in cur.fetchall():
        out.setdefault(row["payout_id"], []).append(_attempt_from_row(row))
    return out


def _fetch_one(cur, where_sql: str, params: tuple, *, for_update: bool = False) -> Optional[PayoutRequest]:
    lock_sql = "FOR UPDATE OF p NOWAIT" if for_update else ""
    cur.execute(
        f"""
        SELECT {_PAYOUT_COLUMNS}
        FROM app.payout_requests p
        WHERE {where_sql}
        LIMIT 1
        {lock_sql}
        """,
        params,
    )
    row = cur.fetchone()
    if not row:
        return None
    attempts = _load_attempts(cur, [row["id"]])
    return _payout_from_row(row, attempts.get(row["id"], []))


# ==========================================================
# Writes
# ==========================================================

def _insert_event(cur, event: PayoutEvent) -> None:
    cur.execute(
        """
        INSERT INTO app.payout_events (
          payout_id, action, actor, from_status, to_status, metadata, request_id, created_at
        )
        VALUES (%s::uuid, %s, %s, %s, %s, %s::jsonb, %s, %s)
        """,
        (
            str(event.payout_id),
            event.action,
            event.actor,
            event.from_status,
            event.to_status,
            Json(event.metadata or {}),
            event.request_id,
            event.created_at,
        ),
    )


def _sync_attempts(cur, payout: PayoutRequest) -> None:
    for a in payout.attempts:
        cur.execute(
            """
            INSERT INTO app.payout_attempts (
              payout_id, number, reference, transfer_code, requires_otp, outcome, started_at, resolved_at
            )
            VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (payout_id, number) DO UPDATE
              SET transfer_code = EXCLUDED.transfer_code,
                  outcome = EXCLUDED.outcome,
                  resolved_at = EXCLUDED.resolved_at
            """,
            (
                str(payout.id),
                a.number,
                a.reference,
                a.transfer_code,
                a.requires_otp,
                a.outcome,
                a.started_at,
                a.resolved_at,
            ),
        )
    # a retry may discard an attempt that never got a gateway reference
    cur.execute(
        "DELETE FROM app.payout_attempts WHERE payout_id = %s::uuid AND number > %s",
        (str(payout.id), len(payout.attempts)),
    )


class _PgClaim:
    def __init__(self, conn, payout: PayoutRequest):
        self._conn = conn
        self.payout = payout

    def commit(self, updated: PayoutRequest, *, event: PayoutEvent) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.payout_requests
                SET
                  status = %s,
                  payment_status = %s,
                  paystack_reference = COALESCE(paystack_reference, %s),
                  transfer_code = %s,
                  manual_reference = %s,
                  last_error = %s,
                  processed_at = %s,
                  last_attempt_at = %s,
                  updated_at = %s
                WHERE id = %s::uuid
                  AND status = %s
                """,
                (
                    updated.status,
                    updated.payment_status,
                    updated.paystack_reference,
                    updated.transfer_code,
                    updated.manual_reference,
                    updated.last_error,
                    updated.processed_at,
                    updated.last_attempt_at,
                    updated.updated_at,
                    str(updated.id),
                    self.payout.status,
                ),
            )
            if cur.rowcount != 1:
                raise AlreadyProcessed("Payout changed while it was being processed")

            _sync_attempts(cur, updated)
            _insert_event(cur, event)

        self.payout = updated


class PostgresPayoutStore:
    def create(self, payout: PayoutRequest) -> PayoutRequest:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO app.payout_requests (
                      id, owner_id, amount_kobo, account_name, account_number, bank_code,
                      status, payment_status, requested_at, updated_at, earning_ids
                    )
                    VALUES (%s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s::uuid[])
                    """,
                    (
                        str(payout.id),
                        str(payout.owner_id),
                        payout.amount_kobo,
                        payout.bank_details.account_name,
                        payout.bank_details.account_number,
                        payout.bank_details.bank_code,
                        payout.status,
                        payout.payment_status,
                        payout.requested_at,
                        payout.updated_at or payout.requested_at,
                        [str(e) for e in payout.earning_ids],
                    ),
                )
        return payout

    def get(self, payout_id: UUID) -> Optional[PayoutRequest]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                return _fetch_one(cur, "p.id = %s::uuid", (str(payout_id),))

    def get_by_reference(self, reference: str) -> Optional[PayoutRequest]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                return _fetch_one(
                    cur,
                    """
                    p.paystack_reference = %s
                    OR EXISTS (
                      SELECT 1 FROM app.payout_attempts a
                      WHERE a.payout_id = p.id AND a.reference = %s
                    )
                    """,
                    (reference, reference),
                )

    def has_open_payout(self, owner_id: UUID) -> bool:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT 1
                    FROM app.payout_requests
                    WHERE owner_id = %s::uuid
                      AND status = ANY(%s)
                    LIMIT 1
                    """,
                    (str(owner_id), list(OPEN_STATUSES)),
                )
                return cur.fetchone() is not None

    @contextmanager
    def claim(self, payout_id: UUID) -> Iterator[_PgClaim]:
        """
        Row lock held for the whole operation (gateway call included).
        NOWAIT: a second writer fails fast instead of queueing behind the first.
        """
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                try:
                    payout = _fetch_one(cur, "p.id = %s::uuid", (str(payout_id),), for_update=True)
                except pg_errors.LockNotAvailable as exc:
                    raise AlreadyProcessed("Payout is being processed by another request") from exc
            if payout is None:
                raise PayoutNotFound(f"Payout {payout_id} not found")
            yield _PgClaim(conn, payout)

    def list(self, query: PayoutQuery) -> PayoutPage:
        where = []
        params: list[Any] = []

        if query.status:
            where.append("p.status = %s")
            params.append(query.status)

        if query.payment_status:
            where.append("p.payment_status = %s")
            params.append(query.payment_status)

        if query.owner_id:
            where.append("p.owner_id = %s::uuid")
            params.append(str(query.owner_id))

        if query.search:
            where.append("(p.account_name ILIKE %s OR p.account_number ILIKE %s)")
            needle = f"%{query.search.strip()}%"
            params.extend([needle, needle])

        if query.start_date and query.end_date:
            lo, hi = day_bounds(query.start_date, query.end_date)
            where.append("p.requested_at BETWEEN %s AND %s")
            params.extend([lo, hi])

        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        page = max(1, query.page)
        offset = (page - 1) * query.limit

        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT count(*) AS total FROM app.payout_requests p {where_sql}", params)
                total = int(cur.fetchone()["total"])

                cur.execute(
                    f"""
                    SELECT {_PAYOUT_COLUMNS}
                    FROM app.payout_requests p
                    {where_sql}
                    ORDER BY p.requested_at DESC, p.id DESC
                    LIMIT %s OFFSET %s
                    """,
                    params + [query.limit, offset],
                )
                rows = cur.fetchall() or []
                attempts = _load_attempts(cur, [r["id"] for r in rows])

        payouts = [_payout_from_row(r, attempts.get(r["id"], [])) for r in rows]
        return PayoutPage(payouts=payouts, total=total, page=page, limit=query.limit)

    def list_events(self, payout_id: UUID) -> list[PayoutEvent]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT payout_id, action, actor, from_status, to_status, metadata, request_id, created_at
                    FROM app.payout_events
                    WHERE payout_id = %s::uuid
                    ORDER BY created_at ASC, id ASC
                    """,
                    (str(payout_id),),
                )
                rows = cur.fetchall() or []

        return [
            PayoutEvent(
                payout_id=r["payout_id"],
                action=r["action"],
                actor=r.get("actor"),
                from_status=r.get("from_status"),
                to_status=r.get("to_status"),
                created_at=r["created_at"],
                metadata=r.get("metadata") or {},
                request_id=r.get("request_id"),
            )
            for r in rows
        ]
