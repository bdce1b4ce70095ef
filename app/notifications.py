# app/notifications.py
from __future__ import annotations

import logging
from typing import Optional, Protocol

from app.payouts.model import PayoutRequest
from services.redaction import mask_account_number

logger = logging.getLogger("payouts.notifications")


class Notifier(Protocol):
    def payout_status_changed(self, payout: PayoutRequest, previous_status: Optional[str]) -> None: ...


class LogNotifier:
    """
    Default channel: one log line per status change. Email/SMS delivery
    plugs in behind the same method.
    """

    def payout_status_changed(self, payout: PayoutRequest, previous_status: Optional[str]) -> None:
        logger.info(
            "notify owner=%s payout=%s status %s -> %s amount_kobo=%s account=%s",
            payout.owner_id,
            payout.id,
            previous_status,
            payout.status,
            payout.amount_kobo,
            mask_account_number(payout.bank_details.account_number),
        )
