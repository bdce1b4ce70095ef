
import threading
import uuid
from dataclasses import replace

import pytest

from app.payouts.errors import (
    AlreadyProcessed,
    GatewayUnavailable,
    InvalidCode,
    InvalidState,
    PayoutNotFound,
    ValidationError,
)
from app.payouts.lifecycle import PayoutLifecycle, transfer_reference
from app.providers.mock import MockGateway

from tests.conftest import RecordingNotifier


def _to_processing(lifecycle, make_payout):
    p = make_payout()
    return lifecycle.initiate_transfer(p.id)


# ---------------------------
# initiate_transfer
# ---------------------------

def test_initiate_without_otp_goes_processing(lifecycle, make_payout, gateway):
    p = make_payout()
    out = lifecycle.initiate_transfer(p.id, actor="admin-1")

    assert out.status == "processing"
    assert out.payment_status == "processing"
    assert out.paystack_reference == transfer_reference(p.id, 1)
    assert out.processed_at is None
    assert len(out.attempts) == 1
    assert out.attempts[0].outcome is None
    assert gateway.count("create_transfer") == 1


def test_initiate_with_otp_goes_otp(lifecycle, make_payout, gateway):
    gateway.requires_otp = True
    p = make_payout()

    out = lifecycle.initiate_transfer(p.id)

    assert out.status == "otp"
    assert out.payment_status == "processing"
    assert out.transfer_code
    assert out.attempts[0].requires_otp is True


def test_initiate_on_completed_payout_is_already_processed_and_untouched(lifecycle, make_payout, payout_store, gateway):
    p = make_payout()
    done = lifecycle.mark_manual_complete(p.id, "BANK-TRF-991")

    with pytest.raises(AlreadyProcessed):
        lifecycle.initiate_transfer(p.id)

    assert payout_store.get(p.id) == done
    assert gateway.count("create_transfer") == 0


def test_initiate_gateway_down_leaves_payout_pending(lifecycle, make_payout, payout_store, gateway):
    p = make_payout()
    gateway.available = False

    with pytest.raises(GatewayUnavailable) as ei:
        lifecycle.initiate_transfer(p.id)

    assert ei.value.retryable is True
    assert payout_store.get(p.id) == p
    assert payout_store.list_events(p.id) == []


def test_initiate_gateway_rejection_leaves_payout_pending(lifecycle, make_payout, payout_store):
    # the mock gateway refuses non-positive amounts
    p = make_payout(amount_kobo=0)

    with pytest.raises(GatewayUnavailable):
        lifecycle.initiate_transfer(p.id)
    assert payout_store.get(p.id) == p


def test_initiate_unknown_payout(lifecycle):
    with pytest.raises(PayoutNotFound):
        lifecycle.initiate_transfer(uuid.uuid4())


def test_concurrent_initiate_issues_one_transfer(payout_store, make_payout):
    entered = threading.Event()
    release = threading.Event()

    class _SlowGateway(MockGateway):
        def create_transfer(self, **kw):
            entered.set()
            assert release.wait(5)
            return super().create_transfer(**kw)

    gw = _SlowGateway()
    lc = PayoutLifecycle(payout_store, gw)
    p = make_payout()
    results = {}

    def first():
        results["first"] = lc.initiate_transfer(p.id)

    t = threading.Thread(target=first)
    t.start()
    assert entered.wait(5)

    with pytest.raises(AlreadyProcessed):
        lc.initiate_transfer(p.id)

    release.set()
    t.join(5)

    assert results["first"].status == "processing"
    assert gw.count("create_transfer") == 1
    assert payout_store.get(p.id).status == "processing"


# ---------------------------
# OTP
# ---------------------------

def test_wrong_otp_keeps_otp_status(lifecycle, make_payout, payout_store, gateway):
    gateway.requires_otp = True
    p = make_payout()
    before = lifecycle.initiate_transfer(p.id)

    with pytest.raises(InvalidCode):
        lifecycle.submit_otp(p.id, "000000")

    after = payout_store.get(p.id)
    assert after == before
    assert after.status == "otp"


def test_malformed_otp_is_validation_error(lifecycle, make_payout, gateway):
    gateway.requires_otp = True
    p = make_payout()
    lifecycle.initiate_transfer(p.id)

    with pytest.raises(ValidationError):
        lifecycle.submit_otp(p.id, "12ab")
    assert gateway.count("finalize_transfer") == 0


def test_submit_otp_outside_otp_state(lifecycle, make_payout):
    p = make_payout()
    with pytest.raises(InvalidState):
        lifecycle.submit_otp(p.id, "123456")


def test_malformed_otp_outside_otp_state_is_invalid_state(lifecycle, make_payout, gateway):
    p = make_payout()
    with pytest.raises(InvalidState):
        lifecycle.submit_otp(p.id, "12ab")
    assert gateway.count("finalize_transfer") == 0


def test_resend_otp_keeps_status_and_records_event(lifecycle, make_payout, payout_store, gateway):
    gateway.requires_otp = True
    p = make_payout()
    lifecycle.initiate_transfer(p.id)

    out = lifecycle.resend_otp(p.id)

    assert out.status == "otp"
    assert gateway.count("resend_otp") == 1
    assert [e.action for e in payout_store.list_events(p.id)] == ["initiate_transfer", "resend_otp"]


def test_resend_otp_requires_otp_state(lifecycle, make_payout):
    p = make_payout()
    with pytest.raises(InvalidState):
        lifecycle.resend_otp(p.id)


def test_resend_otp_gateway_down(lifecycle, make_payout, gateway):
    gateway.requires_otp = True
    p = make_payout()
    lifecycle.initiate_transfer(p.id)
    gateway.available = False

    with pytest.raises(GatewayUnavailable):
        lifecycle.resend_otp(p.id)


def test_otp_scenario_500k_naira_end_to_end(lifecycle, make_payout, gateway, notifier):
    gateway.requires_otp = True
    p = make_payout(amount_kobo=50_000_000)
    assert p.status == "pending"

    assert lifecycle.initiate_transfer(p.id).status == "otp"
    assert lifecycle.submit_otp(p.id, "123456").status == "processing"

    gateway.set_status(transfer_reference(p.id, 1), "success")
    done = lifecycle.check_status(p.id)

    assert done.status == "completed"
    assert done.payment_status == "success"
    assert done.processed_at is not None
    assert done.paystack_reference == transfer_reference(p.id, 1)
    assert [s[2] for s in notifier.sent] == ["otp", "processing", "completed"]


# ---------------------------
# check_status
# ---------------------------

def test_check_status_is_idempotent_while_in_flight(lifecycle, make_payout, payout_store):
    p = _to_processing(lifecycle, make_payout)

    once = lifecycle.check_status(p.id)
    for _ in range(3):
        assert lifecycle.check_status(p.id) == once
    assert once.status == "processing"
    assert payout_store.list_events(p.id)[-1].action == "initiate_transfer"


def test_check_status_failure_then_repeat(lifecycle, make_payout, gateway):
    p = _to_processing(lifecycle, make_payout)
    gateway.set_status(transfer_reference(p.id, 1), "failed")

    failed = lifecycle.check_status(p.id)
    assert failed.status == "failed"
    assert failed.payment_status == "failed"
    assert failed.processed_at is not None
    assert failed.last_error

    assert lifecycle.check_status(p.id) == failed


def test_check_status_unknown_transfer_fails_payout(lifecycle, make_payout, gateway):
    p = _to_processing(lifecycle, make_payout)
    gateway._statuses.clear()

    out = lifecycle.check_status(p.id)
    assert out.status == "failed"
    assert out.attempts[-1].outcome == "not_found"


def test_check_status_without_reference_is_noop(lifecycle, make_payout, gateway):
    p = make_payout()
    assert lifecycle.check_status(p.id) == p
    assert gateway.count("get_transfer_status") == 0


def test_check_status_gateway_down_leaves_processing(lifecycle, make_payout, payout_store, gateway):
    p = _to_processing(lifecycle, make_payout)
    gateway.available = False

    with pytest.raises(GatewayUnavailable):
        lifecycle.check_status(p.id)
    assert payout_store.get(p.id) == p


# ---------------------------
# manual completion, retry, cancel
# ---------------------------

def test_manual_complete_from_pending(lifecycle, make_payout, gateway):
    p = make_payout()
    out = lifecycle.mark_manual_complete(p.id, "  BANK-TRF-991 ")

    assert out.status == "completed"
    assert out.payment_status == "success"
    assert out.manual_reference == "BANK-TRF-991"
    assert out.processed_at is not None
    assert out.paystack_reference is None
    assert gateway.calls == []


def test_manual_complete_needs_reference(lifecycle, make_payout):
    p = make_payout()
    with pytest.raises(ValidationError):
        lifecycle.mark_manual_complete(p.id, "   ")


def test_manual_complete_only_from_pending(lifecycle, make_payout):
    p = _to_processing(lifecycle, make_payout)
    with pytest.raises(InvalidState):
        lifecycle.mark_manual_complete(p.id, "BANK-TRF-1")


def test_retry_on_pending_is_invalid_state(lifecycle, make_payout):
    p = make_payout()
    with pytest.raises(InvalidState):
        lifecycle.retry(p.id)


def test_retry_keeps_reference_and_opens_new_attempt(lifecycle, make_payout, gateway):
    p = _to_processing(lifecycle, make_payout)
    first_ref = transfer_reference(p.id, 1)
    gateway.set_status(first_ref, "failed")
    lifecycle.check_status(p.id)

    again = lifecycle.retry(p.id)
    assert again.status == "pending"
    assert again.payment_status == "pending"
    assert again.processed_at is None
    assert again.paystack_reference == first_ref
    assert len(again.attempts) == 1

    second = lifecycle.initiate_transfer(p.id)
    assert second.paystack_reference == first_ref
    assert second.active_reference == transfer_reference(p.id, 2)
    assert [a.number for a in second.attempts] == [1, 2]

    gateway.set_status(transfer_reference(p.id, 2), "success")
    assert lifecycle.check_status(p.id).status == "completed"


def test_initiate_without_echoed_reference_tracks_sent_reference(payout_store, make_payout):
    gw = MockGateway(return_reference=False)
    lc = PayoutLifecycle(payout_store, gw)
    p = make_payout()
    sent = transfer_reference(p.id, 1)

    started = lc.initiate_transfer(p.id)
    assert started.status == "processing"
    assert started.paystack_reference == sent
    assert started.active_reference == sent

    gw.set_status(sent, "failed")
    assert lc.check_status(p.id).status == "failed"

    again = lc.retry(p.id)
    assert again.status == "pending"
    assert [a.reference for a in again.attempts] == [sent]
    assert lc.cancel(again.id).status == "cancelled"


class _NoCodeOtpGateway(MockGateway):
    def create_transfer(self, **kwargs):
        init = super().create_transfer(**kwargs)
        return replace(init, transfer_code=None, requires_otp=True, status="otp")


def test_otp_challenge_without_transfer_code_leaves_payout_pending(payout_store, make_payout):
    lc = PayoutLifecycle(payout_store, _NoCodeOtpGateway())
    p = make_payout()

    with pytest.raises(GatewayUnavailable):
        lc.initiate_transfer(p.id)

    after = payout_store.get(p.id)
    assert after.status == "pending"
    assert after.attempts == ()
    assert payout_store.list_events(p.id) == []


def test_cancel_from_pending(lifecycle, make_payout):
    p = make_payout()
    out = lifecycle.cancel(p.id, reason="duplicate request")

    assert out.status == "cancelled"
    assert out.payment_status == "pending"
    assert out.processed_at is None
    assert out.last_error == "duplicate request"

    with pytest.raises(AlreadyProcessed):
        lifecycle.initiate_transfer(p.id)


def test_cancel_only_from_pending(lifecycle, make_payout):
    p = _to_processing(lifecycle, make_payout)
    with pytest.raises(InvalidState):
        lifecycle.cancel(p.id)


# ---------------------------
# gateway events
# ---------------------------

def test_gateway_event_completes_processing_payout(lifecycle, make_payout, payout_store):
    p = _to_processing(lifecycle, make_payout)

    out = lifecycle.apply_gateway_event(transfer_reference(p.id, 1), "success")

    assert out.status == "completed"
    assert payout_store.list_events(p.id)[-1].actor == "gateway"


def test_gateway_event_for_stale_attempt_is_ignored(lifecycle, make_payout, gateway):
    p = _to_processing(lifecycle, make_payout)
    gateway.set_status(transfer_reference(p.id, 1), "failed")
    lifecycle.check_status(p.id)
    lifecycle.retry(p.id)
    lifecycle.initiate_transfer(p.id)

    out = lifecycle.apply_gateway_event(transfer_reference(p.id, 1), "success")
    assert out.status == "processing"


def test_gateway_event_unknown_reference(lifecycle):
    assert lifecycle.apply_gateway_event("payout_nope_1", "success") is None


def test_gateway_event_in_flight_status_changes_nothing(lifecycle, make_payout):
    p = _to_processing(lifecycle, make_payout)
    assert lifecycle.apply_gateway_event(transfer_reference(p.id, 1), "pending") == p


# ---------------------------
# invariants across a whole run
# ---------------------------

def test_reference_never_changes_and_completed_is_consistent(lifecycle, make_payout, payout_store, gateway):
    gateway.requires_otp = True
    p = make_payout()
    seen = []

    for step in (
        lambda: lifecycle.initiate_transfer(p.id),
        lambda: lifecycle.resend_otp(p.id),
        lambda: lifecycle.submit_otp(p.id, "123456"),
        lambda: gateway.set_status(transfer_reference(p.id, 1), "failed"),
        lambda: lifecycle.check_status(p.id),
        lambda: lifecycle.retry(p.id),
        lambda: lifecycle.initiate_transfer(p.id),
        lambda: lifecycle.submit_otp(p.id, "123456"),
        lambda: gateway.set_status(transfer_reference(p.id, 2), "success"),
        lambda: lifecycle.check_status(p.id),
    ):
        step()
        seen.append(payout_store.get(p.id).paystack_reference)

    assert set(seen) == {transfer_reference(p.id, 1)}
    final = payout_store.get(p.id)
    assert final.status == "completed"
    assert final.payment_status == "success"
    assert final.processed_at is not None


def test_events_carry_transitions(lifecycle, make_payout, payout_store):
    p = _to_processing(lifecycle, make_payout)
    events = payout_store.list_events(p.id)

    assert len(events) == 1
    assert (events[0].from_status, events[0].to_status) == ("pending", "processing")
    assert events[0].metadata["reference"] == transfer_reference(p.id, 1)


def test_notifier_failure_does_not_undo_transition(payout_store, gateway, make_payout):
    lc = PayoutLifecycle(payout_store, gateway, notifier=RecordingNotifier(fail=True))
    p = make_payout()

    out = lc.initiate_transfer(p.id)

    assert out.status == "processing"
    assert payout_store.get(p.id).status == "processing"
