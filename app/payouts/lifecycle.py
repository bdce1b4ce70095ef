# app/payouts/lifecycle.py
from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

from app.notifications import Notifier
from app.payouts.errors import (
    AlreadyProcessed,
    GatewayUnavailable,
    InvalidCode,
    InvalidState,
    PayoutNotFound,
    ValidationError,
)
from app.payouts.model import (
    CANCELLED,
    COMPLETED,
    FAILED,
    OTP,
    PENDING,
    PROCESSING,
    PayoutEvent,
    PayoutRequest,
    TransferAttempt,
)
from app.payouts.repository import PayoutClaim, PayoutStore
from app.payouts.state_machine import (
    PAYMENT_STATUS_FOR,
    assert_consistent,
    assert_reference_unchanged,
    assert_transition,
)
from app.providers.base import GatewayRejected, PaymentGateway, TransferStatus, map_transfer_status
from services.observability import get_request_id

logger = logging.getLogger("payouts")

_OTP_RE = re.compile(r"^\d{4,8}$")


class EarningsLedger(Protocol):
    def settle_payout(self, payout: PayoutRequest) -> None: ...
    def settle_outstanding(self) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transfer_reference(payout_id: UUID, attempt_number: int) -> str:
    # deterministic per attempt: the gateway refuses a duplicate reference
    return f"payout_{payout_id.hex}_{attempt_number}"


class PayoutLifecycle:
    """
    Drives a PayoutRequest through its states.

        pending --initiate--> processing | otp
        otp --submit_otp--> processing
        otp --resend_otp--> otp
        processing --check_status / gateway event--> completed | failed
        failed --retry--> pending
        pending --manual complete--> completed
        pending --cancel--> cancelled

    Every mutation runs inside an exclusive claim on the payout and commits
    with a compare-and-swap on the status read at claim time. Gateway errors
    leave the payout untouched.
    """

    def __init__(
        self,
        store: PayoutStore,
        gateway: PaymentGateway,
        *,
        notifier: Optional[Notifier] = None,
        earnings: Optional[EarningsLedger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.earnings = earnings
        self.clock = clock

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get(self, payout_id: UUID) -> PayoutRequest:
        payout = self.store.get(payout_id)
        if payout is None:
            raise PayoutNotFound(f"Payout {payout_id} not found")
        return payout

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    def initiate_transfer(self, payout_id: UUID, *, actor: Optional[str] = None) -> PayoutRequest:
        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            if payout.status != PENDING:
                raise AlreadyProcessed(f"Payout is {payout.status}; only pending payouts can be initiated")

            number = len(payout.attempts) + 1
            reference = transfer_reference(payout.id, number)
            try:
                init = self.gateway.create_transfer(
                    bank_details=payout.bank_details,
                    amount_kobo=payout.amount_kobo,
                    reference=reference,
                    reason=f"Referral payout {payout.id}",
                )
            except GatewayRejected as exc:
                logger.warning("payout=%s create transfer rejected: %s", payout.id, exc.message)
                raise GatewayUnavailable(f"Transfer was not created: {exc.message}") from exc

            if init.requires_otp and not init.transfer_code:
                raise GatewayUnavailable("Gateway asked for an OTP but returned no transfer code")

            # the gateway keys the transfer by the reference we sent; an answer
            # that omits it still refers to that transfer
            live_reference = init.reference or reference
            now = self.clock()
            attempt = TransferAttempt(
                number=number,
                reference=live_reference,
                transfer_code=init.transfer_code,
                requires_otp=init.requires_otp,
                started_at=now,
            )
            new_status = OTP if init.requires_otp else PROCESSING
            updated = replace(
                payout,
                status=new_status,
                payment_status=PAYMENT_STATUS_FOR[new_status],
                paystack_reference=payout.paystack_reference or live_reference,
                transfer_code=init.transfer_code,
                attempts=payout.attempts + (attempt,),
                last_error=None,
                last_attempt_at=now,
                updated_at=now,
            )
            self._commit(
                claim,
                updated,
                action="initiate_transfer",
                actor=actor,
                metadata={"reference": live_reference, "requires_otp": init.requires_otp, "attempt": number},
            )

        self._after(updated, payout.status)
        return updated

    def submit_otp(self, payout_id: UUID, code: str, *, actor: Optional[str] = None) -> PayoutRequest:
        otp = (code or "").strip()

        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            if payout.status != OTP:
                raise InvalidState(f"Payout is not awaiting an OTP (status={payout.status})")
            if not payout.transfer_code:
                raise InvalidState("No transfer code recorded for OTP submission")
            if not _OTP_RE.match(otp):
                raise ValidationError("OTP must be 4 to 8 digits")

            try:
                self.gateway.finalize_transfer(transfer_code=payout.transfer_code, otp=otp)
            except GatewayRejected as exc:
                logger.info("payout=%s OTP rejected by gateway: %s", payout.id, exc.message)
                raise InvalidCode(exc.message) from exc

            now = self.clock()
            updated = replace(
                payout,
                status=PROCESSING,
                payment_status=PAYMENT_STATUS_FOR[PROCESSING],
                last_error=None,
                last_attempt_at=now,
                updated_at=now,
            )
            self._commit(claim, updated, action="submit_otp", actor=actor)

        self._after(updated, payout.status)
        return updated

    def resend_otp(self, payout_id: UUID, *, actor: Optional[str] = None) -> PayoutRequest:
        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            if payout.status != OTP:
                raise InvalidState(f"Payout is not awaiting an OTP (status={payout.status})")
            if not payout.transfer_code:
                raise InvalidState("No transfer code recorded; initiate a new transfer")

            try:
                self.gateway.resend_otp(transfer_code=payout.transfer_code)
            except GatewayRejected as exc:
                raise GatewayUnavailable(f"OTP resend refused: {exc.message}") from exc

            now = self.clock()
            updated = replace(payout, last_attempt_at=now, updated_at=now)
            self._commit(claim, updated, action="resend_otp", actor=actor)

        return updated

    def check_status(self, payout_id: UUID, *, actor: Optional[str] = None) -> PayoutRequest:
        """
        Idempotent poll. Only a processing payout with a live reference is
        polled; only a terminal gateway answer changes anything.
        """
        payout = self.get(payout_id)
        reference = payout.active_reference
        if payout.status != PROCESSING or not reference:
            return payout

        result = self.gateway.get_transfer_status(reference)
        if not result.is_terminal:
            logger.info("payout=%s reference=%s still in flight (%s)", payout.id, reference, result.status)
            return payout

        return self._resolve(payout_id, reference, result, action="check_status", actor=actor)

    def apply_gateway_event(
        self,
        reference: str,
        status_raw: str,
        *,
        reason: Optional[str] = None,
    ) -> Optional[PayoutRequest]:
        """Webhook path: same terminal transition as check_status, keyed by reference."""
        payout = self.store.get_by_reference(reference)
        if payout is None:
            logger.warning("gateway event for unknown reference=%s status=%s", reference, status_raw)
            return None

        state = map_transfer_status(status_raw)
        if state not in ("success", "failed"):
            return payout
        if payout.status != PROCESSING or payout.active_reference != reference:
            return payout

        result = TransferStatus(status=state, reference=reference, error=reason)
        return self._resolve(payout.id, reference, result, action="gateway_event", actor="gateway")

    def mark_manual_complete(
        self,
        payout_id: UUID,
        reference: str,
        *,
        actor: Optional[str] = None,
    ) -> PayoutRequest:
        manual_reference = (reference or "").strip()
        if not manual_reference:
            raise ValidationError("A transfer reference is required for manual completion")

        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            if payout.status != PENDING:
                raise InvalidState(f"Only pending payouts can be completed manually (status={payout.status})")

            now = self.clock()
            updated = replace(
                payout,
                status=COMPLETED,
                payment_status=PAYMENT_STATUS_FOR[COMPLETED],
                manual_reference=manual_reference,
                transfer_code=None,
                last_error=None,
                processed_at=now,
                updated_at=now,
            )
            self._commit(
                claim,
                updated,
                action="manual_complete",
                actor=actor,
                metadata={"manual_reference": manual_reference},
            )

        self._after(updated, payout.status)
        return updated

    def retry(self, payout_id: UUID, *, actor: Optional[str] = None) -> PayoutRequest:
        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            if payout.status != FAILED:
                raise InvalidState(f"Only failed payouts can be retried (status={payout.status})")

            now = self.clock()
            updated = replace(
                payout,
                status=PENDING,
                payment_status=PAYMENT_STATUS_FOR[PENDING],
                transfer_code=None,
                processed_at=None,
                updated_at=now,
            )
            self._commit(
                claim,
                updated,
                action="retry",
                actor=actor,
                metadata={"attempts": len(payout.attempts), "previous_error": payout.last_error},
            )

        self._after(updated, payout.status)
        return updated

    def cancel(self, payout_id: UUID, *, reason: Optional[str] = None, actor: Optional[str] = None) -> PayoutRequest:
        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            if payout.status != PENDING:
                raise InvalidState(f"Only pending payouts can be cancelled (status={payout.status})")

            now = self.clock()
            updated = replace(
                payout,
                status=CANCELLED,
                payment_status=PAYMENT_STATUS_FOR[CANCELLED],
                last_error=(reason or "").strip() or None,
                updated_at=now,
            )
            self._commit(claim, updated, action="cancel", actor=actor, metadata={"reason": reason})

        self._after(updated, payout.status)
        return updated

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _resolve(
        self,
        payout_id: UUID,
        reference: str,
        result: TransferStatus,
        *,
        action: str,
        actor: Optional[str],
    ) -> PayoutRequest:
        with self.store.claim(payout_id) as claim:
            payout = claim.payout
            # resolved by someone else between the read and the claim
            if payout.status != PROCESSING or payout.active_reference != reference:
                return payout

            now = self.clock()
            succeeded = result.status == "success"
            new_status = COMPLETED if succeeded else FAILED
            attempts = payout.attempts[:-1] + (
                replace(payout.attempts[-1], outcome=result.status, resolved_at=now),
            )
            updated = replace(
                payout,
                status=new_status,
                payment_status=PAYMENT_STATUS_FOR[new_status],
                attempts=attempts,
                transfer_code=None,
                last_error=None if succeeded else (result.error or f"Gateway reported {result.status}"),
                processed_at=now,
                updated_at=now,
            )
            self._commit(
                claim,
                updated,
                action=action,
                actor=actor,
                metadata={"reference": reference, "gateway_status": result.status},
            )

        self._after(updated, payout.status)
        return updated

    def _commit(
        self,
        claim: PayoutClaim,
        updated: PayoutRequest,
        *,
        action: str,
        actor: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        before = claim.payout
        assert_transition(before.status, updated.status)
        assert_consistent(updated)
        assert_reference_unchanged(before, updated)

        event = PayoutEvent(
            payout_id=updated.id,
            action=action,
            actor=actor,
            from_status=before.status,
            to_status=updated.status,
            created_at=updated.updated_at or self.clock(),
            metadata=metadata or {},
            request_id=get_request_id(),
        )
        claim.commit(updated, event=event)
        logger.info("payout=%s %s: %s -> %s actor=%s", updated.id, action, before.status, updated.status, actor)

    def _after(self, payout: PayoutRequest, previous_status: str) -> None:
        # the transition is already committed; settle_outstanding() picks up
        # earnings left behind by a failed settlement
        if self.earnings is not None and payout.status in (COMPLETED, CANCELLED):
            try:
                self.earnings.settle_payout(payout)
            except Exception:
                logger.exception("earnings settlement failed payout=%s status=%s", payout.id, payout.status)

        if self.notifier is None or payout.status == previous_status:
            return
        try:
            self.notifier.payout_status_changed(payout, previous_status)
        except Exception:
            # notifications are fire-and-forget
            logger.exception("notification failed payout=%s status=%s", payout.id, payout.status)
