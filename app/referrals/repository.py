# app/referrals/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

from psycopg2 import errors as pg_errors
from psycopg2.extras import RealDictCursor

from db import get_conn
from app.payouts.model import BankDetails
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


class ReferralStore(Protocol):
    def get_settings(self) -> Optional[ReferralProgramSettings]: ...
    def save_settings(self, s: ReferralProgramSettings) -> ReferralProgramSettings: ...
    def get_account(self, owner_id: UUID) -> Optional[ReferrerAccount]: ...
    def save_account(self, account: ReferrerAccount) -> ReferrerAccount: ...
    def add_earning(self, earning: ReferralEarning) -> ReferralEarning: ...
    def get_earning(self, earning_id: UUID) -> Optional[ReferralEarning]: ...
    def set_earning_status(self, earning_id: UUID, *, expected: str, status: str) -> Optional[ReferralEarning]: ...
    def list_earnings(self, referrer_id: UUID) -> list[ReferralEarning]: ...
    def search_earnings(self, query: EarningQuery) -> EarningPage: ...
    def eligible_earnings(self, referrer_id: UUID) -> list[ReferralEarning]: ...
    def reserve_earnings(self, referrer_id: UUID, earning_ids: list[UUID], payout_id: UUID) -> int: ...
    def mark_paid(self, payout_id: UUID, paid_at: datetime) -> int: ...
    def release(self, payout_id: UUID) -> int: ...
    def requested_payout_ids(self) -> list[UUID]: ...


_EARNING_COLUMNS = """
  id, referrer_id, referred_user_id, order_id, order_total_kobo, percentage,
  amount_kobo, status, payment_status, payout_id, created_at, paid_at
"""


def _earning_from_row(row: dict[str, Any]) -> ReferralEarning:
    return ReferralEarning(
        id=row["id"],
        referrer_id=row["referrer_id"],
        referred_user_id=row["referred_user_id"],
        order_id=row["order_id"],
        order_total_kobo=int(row["order_total_kobo"]),
        percentage=float(row["percentage"]),
        amount_kobo=int(row["amount_kobo"]),
        status=row["status"],
        payment_status=row["payment_status"],
        created_at=row["created_at"],
        payout_id=row.get("payout_id"),
        paid_at=row.get("paid_at"),
    )


class PostgresReferralStore:
    # -----------------------
    # program settings (single row, id = 1)
    # -----------------------
    def get_settings(self) -> Optional[ReferralProgramSettings]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT min_payout_kobo, referral_percentage, updated_at FROM app.referral_settings WHERE id = 1"
                )
                row = cur.fetchone()
        if not row:
            return None
        return ReferralProgramSettings(
            min_payout_kobo=int(row["min_payout_kobo"]),
            referral_percentage=float(row["referral_percentage"]),
            updated_at=row.get("updated_at"),
        )

    def save_settings(self, s: ReferralProgramSettings) -> ReferralProgramSettings:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO app.referral_settings (id, min_payout_kobo, referral_percentage, updated_at)
                    VALUES (1, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE
                      SET min_payout_kobo = EXCLUDED.min_payout_kobo,
                          referral_percentage = EXCLUDED.referral_percentage,
                          updated_at = EXCLUDED.updated_at
                    """,
                    (s.min_payout_kobo, s.referral_percentage, s.updated_at),
                )
        return s

    # -----------------------
    # referrer accounts
    # -----------------------
    def get_account(self, owner_id: UUID) -> Optional[ReferrerAccount]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT owner_id, account_name, account_number, bank_code, verified, verified_at
                    FROM app.referrer_accounts
                    WHERE owner_id = %s::uuid
                    """,
                    (str(owner_id),),
                )
                row = cur.fetchone()
        if not row:
            return None
        return ReferrerAccount(
            owner_id=row["owner_id"],
            bank_details=BankDetails(
                account_name=row.get("account_name") or "",
                account_number=row.get("account_number") or "",
                bank_code=row.get("bank_code") or "",
            ),
            verified=bool(row.get("verified")),
            verified_at=row.get("verified_at"),
        )

    def save_account(self, account: ReferrerAccount) -> ReferrerAccount:
        bd = account.bank_details
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO app.referrer_accounts (
                      owner_id, account_name, account_number, bank_code, verified, verified_at
                    )
                    VALUES (%s::uuid, %s, %s, %s, %s, %s)
                    ON CONFLICT (owner_id) DO UPDATE
                      SET account_name = EXCLUDED.account_name,
                          account_number = EXCLUDED.account_number,
                          bank_code = EXCLUDED.bank_code,
                          verified = EXCLUDED.verified,
                          verified_at = EXCLUDED.verified_at
                    """,
                    (
                        str(account.owner_id),
                        bd.account_name,
                        bd.account_number,
                        bd.bank_code,
                        account.verified,
                        account.verified_at,
                    ),
                )
        return account

    # -----------------------
    # earnings
    # -----------------------
    def add_earning(self, earning: ReferralEarning) -> ReferralEarning:
        try:
            with get_conn() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO app.referral_earnings (
                          id, referrer_id, referred_user_id, order_id, order_total_kobo, percentage,
                          amount_kobo, status, payment_status, created_at
                        )
                        VALUES (%s::uuid, %s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            str(earning.id),
                            str(earning.referrer_id),
                            str(earning.referred_user_id),
                            earning.order_id,
                            earning.order_total_kobo,
                            earning.percentage,
                            earning.amount_kobo,
                            earning.status,
                            earning.payment_status,
                            earning.created_at,
                        ),
                    )
        except pg_errors.UniqueViolation as exc:
            raise ValueError(f"Earning already recorded for order {earning.order_id}") from exc
        return earning

    def get_earning(self, earning_id: UUID) -> Optional[ReferralEarning]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_EARNING_COLUMNS} FROM app.referral_earnings WHERE id = %s::uuid",
                    (str(earning_id),),
                )
                row = cur.fetchone()
        return _earning_from_row(row) if row else None

    def set_earning_status(self, earning_id: UUID, *, expected: str, status: str) -> Optional[ReferralEarning]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    UPDATE app.referral_earnings
                    SET status = %s
                    WHERE id = %s::uuid
                      AND status = %s
                    RETURNING {_EARNING_COLUMNS}
                    """,
                    (status, str(earning_id), expected),
                )
                row = cur.fetchone()
        return _earning_from_row(row) if row else None

    def list_earnings(self, referrer_id: UUID) -> list[ReferralEarning]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_EARNING_COLUMNS}
                    FROM app.referral_earnings
                    WHERE referrer_id = %s::uuid
                    ORDER BY created_at ASC, id ASC
                    """,
                    (str(referrer_id),),
                )
                rows = cur.fetchall() or []
        return [_earning_from_row(r) for r in rows]

    def search_earnings(self, query: EarningQuery) -> EarningPage:
        where = []
        params: list[Any] = []

        if query.status:
            where.append("status = %s")
            params.append(query.status)

        if query.payment_status:
            where.append("payment_status = %s")
            params.append(query.payment_status)

        if query.referrer_id:
            where.append("referrer_id = %s::uuid")
            params.append(str(query.referrer_id))

        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        page = max(1, query.page)
        offset = (page - 1) * query.limit

        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT count(*) AS total FROM app.referral_earnings {where_sql}", params)
                total = int(cur.fetchone()["total"])

                cur.execute(
                    f"""
                    SELECT {_EARNING_COLUMNS}
                    FROM app.referral_earnings
                    {where_sql}
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s OFFSET %s
                    """,
                    params + [query.limit, offset],
                )
                rows = cur.fetchall() or []

        return EarningPage(
            earnings=[_earning_from_row(r) for r in rows],
            total=total,
            page=page,
            limit=query.limit,
        )

    def eligible_earnings(self, referrer_id: UUID) -> list[ReferralEarning]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_EARNING_COLUMNS}
                    FROM app.referral_earnings
                    WHERE referrer_id = %s::uuid
                      AND status = %s
                      AND payment_status = %s
                    ORDER BY created_at ASC, id ASC
                    """,
                    (str(referrer_id), EARNING_APPROVED, UNPAID),
                )
                rows = cur.fetchall() or []
        return [_earning_from_row(r) for r in rows]

    def reserve_earnings(self, referrer_id: UUID, earning_ids: list[UUID], payout_id: UUID) -> int:
        """All or nothing: any earning already taken rolls the whole reservation back."""
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE app.referral_earnings
                    SET payment_status = %s, payout_id = %s::uuid
                    WHERE id = ANY(%s::uuid[])
                      AND referrer_id = %s::uuid
                      AND status = %s
                      AND payment_status = %s
                    """,
                    (
                        REQUESTED,
                        str(payout_id),
                        [str(e) for e in earning_ids],
                        str(referrer_id),
                        EARNING_APPROVED,
                        UNPAID,
                    ),
                )
                if cur.rowcount != len(earning_ids):
                    conn.rollback()
                    return 0
                return cur.rowcount

    def mark_paid(self, payout_id: UUID, paid_at: datetime) -> int:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE app.referral_earnings
                    SET payment_status = %s, paid_at = %s
                    WHERE payout_id = %s::uuid
                      AND payment_status = %s
                    """,
                    (PAID, paid_at, str(payout_id), REQUESTED),
                )
                return cur.rowcount

    def release(self, payout_id: UUID) -> int:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE app.referral_earnings
                    SET payment_status = %s, payout_id = NULL
                    WHERE payout_id = %s::uuid
                      AND payment_status = %s
                    """,
                    (UNPAID, str(payout_id), REQUESTED),
                )
                return cur.rowcount

    def requested_payout_ids(self) -> list[UUID]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT DISTINCT payout_id
                    FROM app.referral_earnings
                    WHERE payment_status = %s
                      AND payout_id IS NOT NULL
                    ORDER BY payout_id
                    """,
                    (REQUESTED,),
                )
                rows = cur.fetchall() or []
        return [r["payout_id"] for r in rows]
