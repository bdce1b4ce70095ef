# db.py
from __future__ import annotations

import logging
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

logger = logging.getLogger("payouts.db")

_pool: ThreadedConnectionPool | None = None


def init_pool() -> None:
    """
    Create the shared connection pool on first use.

    Threaded because sync route handlers, the webhook threadpool hop and
    the poller all borrow connections concurrently.
    """
    global _pool
    if _pool is not None:
        return

    psycopg2.extras.register_uuid()
    _pool = ThreadedConnectionPool(
        minconn=settings.DB_POOL_MIN,
        maxconn=settings.DB_POOL_MAX,
        dsn=settings.DATABASE_URL,
        connect_timeout=5,
    )
    logger.info("db pool ready min=%s max=%s", settings.DB_POOL_MIN, settings.DB_POOL_MAX)


def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    _pool.closeall()
    _pool = None
    logger.info("db pool closed")


def _session_settings() -> list[tuple[str, str]]:
    # a claimed payout row stays locked across one gateway round trip
    idle_ms = int(settings.PAYSTACK_HTTP_TIMEOUT_S * 1000) + 10_000
    return [
        ("statement_timeout", f"{settings.DB_STATEMENT_TIMEOUT_MS}ms"),
        ("idle_in_transaction_session_timeout", f"{idle_ms}ms"),
        ("application_name", "referral_payouts"),
    ]


@contextmanager
def get_conn():
    """
    Borrow a pooled connection for one transaction.
    Commits when the block exits cleanly, rolls back when it raises.
    """
    if _pool is None:
        init_pool()

    conn = _pool.getconn()
    try:
        with conn.cursor() as cur:
            for name, value in _session_settings():
                cur.execute("SELECT set_config(%s, %s, false);", (name, value))

        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _pool.putconn(conn)


def ping() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
    except psycopg2.Error as exc:
        logger.warning("db ping failed err=%s", exc)
        return False, f"{type(exc).__name__}: {exc}"
    return True, None
