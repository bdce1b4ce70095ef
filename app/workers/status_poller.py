# app/workers/status_poller.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from app.payouts.errors import PayoutError
from app.payouts.lifecycle import PayoutLifecycle
from app.payouts.model import COMPLETED, FAILED, PROCESSING, PayoutQuery
from app.payouts.repository import PayoutStore

logger = logging.getLogger("payouts.poller")

DEFAULT_BATCH_SIZE = 50


@dataclass
class PollSummary:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    unchanged: int = 0
    errors: int = 0
    settled: int = 0
    error_ids: List[str] = field(default_factory=list)


def poll_once(lifecycle: PayoutLifecycle, store: PayoutStore, *, batch_size: int = DEFAULT_BATCH_SIZE) -> PollSummary:
    """
    One pass of check_status over processing payouts, then a settlement
    sweep for earnings left requested on resolved payouts. Operator-triggered;
    nothing schedules this. A failing payout is counted and skipped.
    """
    page = store.list(PayoutQuery(status=PROCESSING, page=1, limit=batch_size))
    summary = PollSummary()
    logger.info("poll_once found_processing=%s total=%s", len(page.payouts), page.total)

    for p in page.payouts:
        summary.checked += 1
        try:
            updated = lifecycle.check_status(p.id, actor="poller")
        except PayoutError as exc:
            summary.errors += 1
            summary.error_ids.append(str(p.id))
            logger.warning("poll_once payout=%s %s: %s", p.id, exc.code, exc.message)
            continue
        except Exception:
            summary.errors += 1
            summary.error_ids.append(str(p.id))
            logger.exception("poll_once payout=%s check failed", p.id)
            continue

        if updated.status == COMPLETED:
            summary.completed += 1
        elif updated.status == FAILED:
            summary.failed += 1
        else:
            summary.unchanged += 1

    if lifecycle.earnings is not None:
        try:
            summary.settled = lifecycle.earnings.settle_outstanding()
        except Exception:
            logger.exception("poll_once settlement sweep failed")

    logger.info(
        "poll_once done checked=%s completed=%s failed=%s unchanged=%s errors=%s settled=%s",
        summary.checked,
        summary.completed,
        summary.failed,
        summary.unchanged,
        summary.errors,
        summary.settled,
    )
    return summary
