import uuid

import pytest

from app.payouts.errors import (
    AlreadyProcessed,
    EarningNotFound,
    InvalidState,
    ValidationError,
)
from app.referrals.model import EarningQuery, commission_kobo


def _approved_earnings(referrals, referrer_id, totals):
    out = []
    for i, total in enumerate(totals):
        e = referrals.record_earning(
            referrer_id=referrer_id,
            referred_user_id=uuid.uuid4(),
            order_id=f"order-{i}-{uuid.uuid4().hex[:6]}",
            order_total_kobo=total,
        )
        out.append(referrals.approve_earning(e.id))
    return out


def _with_bank(referrals, owner_id):
    return referrals.update_bank_details(owner_id, account_number="0123456789", bank_code="058")


@pytest.mark.parametrize(
    "total,pct,expected",
    [
        (10_000_000, 1.5, 150_000),
        (333, 1.5, 5),  # 4.995 rounds half up
        (100, 0, 0),
        (12_345, 100, 12_345),
    ],
)
def test_commission_rounding(total, pct, expected):
    assert commission_kobo(total, pct) == expected


def test_record_earning_uses_current_percentage(referrals):
    referrals.update_settings(min_payout_kobo=500_000, referral_percentage=2.0)
    e = referrals.record_earning(
        referrer_id=uuid.uuid4(),
        referred_user_id=uuid.uuid4(),
        order_id="order-1",
        order_total_kobo=1_000_000,
    )
    assert e.amount_kobo == 20_000
    assert e.percentage == 2.0
    assert e.status == "pending"
    assert e.payment_status == "unpaid"


def test_record_earning_validation(referrals):
    me = uuid.uuid4()
    with pytest.raises(ValidationError):
        referrals.record_earning(referrer_id=me, referred_user_id=me, order_id="o", order_total_kobo=100)
    with pytest.raises(ValidationError):
        referrals.record_earning(referrer_id=me, referred_user_id=uuid.uuid4(), order_id="o", order_total_kobo=0)


def test_duplicate_order_is_rejected(referrals):
    me = uuid.uuid4()
    referrals.record_earning(referrer_id=me, referred_user_id=uuid.uuid4(), order_id="o-1", order_total_kobo=100)
    with pytest.raises(ValidationError):
        referrals.record_earning(referrer_id=me, referred_user_id=uuid.uuid4(), order_id="o-1", order_total_kobo=100)


def test_review_only_once(referrals):
    e = referrals.record_earning(
        referrer_id=uuid.uuid4(), referred_user_id=uuid.uuid4(), order_id="o", order_total_kobo=100
    )
    assert referrals.reject_earning(e.id).status == "rejected"
    with pytest.raises(InvalidState):
        referrals.approve_earning(e.id)
    with pytest.raises(EarningNotFound):
        referrals.approve_earning(uuid.uuid4())


def test_settings_defaults_and_bounds(referrals):
    s = referrals.get_settings()
    assert (s.min_payout_kobo, s.referral_percentage) == (500_000, 1.5)

    with pytest.raises(ValidationError):
        referrals.update_settings(min_payout_kobo=9_999, referral_percentage=1.5)
    with pytest.raises(ValidationError):
        referrals.update_settings(min_payout_kobo=10_000, referral_percentage=100.5)

    s = referrals.update_settings(min_payout_kobo=10_000, referral_percentage=0)
    assert referrals.get_settings() == s


def test_bank_details_resolved_through_gateway(referrals, gateway):
    owner = uuid.uuid4()
    gateway.account_names[("0123456789", "058")] = "ADA OBI"

    account = _with_bank(referrals, owner)

    assert account.verified is True
    assert account.bank_details.account_name == "ADA OBI"
    assert gateway.count("resolve_account") == 1


def test_bank_details_rejected(referrals):
    with pytest.raises(ValidationError):
        referrals.update_bank_details(uuid.uuid4(), account_number="12345", bank_code="058")


def test_request_payout_creates_pending_and_reserves_earnings(referrals, referral_store, payout_store):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    earnings = _approved_earnings(referrals, owner, [20_000_000, 20_000_000])

    elig = referrals.check_eligibility(owner)
    assert elig.eligible_total_kobo == 600_000
    assert elig.eligible is True

    payout = referrals.request_payout(owner)

    assert payout.status == "pending"
    assert payout.payment_status == "pending"
    assert payout.amount_kobo == 600_000
    assert payout.bank_details.account_number == "0123456789"
    assert set(payout.earning_ids) == {e.id for e in earnings}
    assert payout_store.get(payout.id) == payout
    assert {referral_store.get_earning(e.id).payment_status for e in earnings} == {"requested"}

    elig = referrals.check_eligibility(owner)
    assert elig.has_open_payout is True
    assert elig.eligible is False


def test_request_payout_refused_while_one_is_open(referrals):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    _approved_earnings(referrals, owner, [40_000_000])
    referrals.request_payout(owner)
    _approved_earnings(referrals, owner, [40_000_000])

    with pytest.raises(InvalidState):
        referrals.request_payout(owner)


def test_request_payout_below_minimum(referrals):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    _approved_earnings(referrals, owner, [1_000_000])

    with pytest.raises(ValidationError):
        referrals.request_payout(owner)


def test_request_payout_needs_bank_details(referrals):
    owner = uuid.uuid4()
    _approved_earnings(referrals, owner, [40_000_000])

    with pytest.raises(ValidationError):
        referrals.request_payout(owner)


def test_request_payout_lost_reservation(referrals, referral_store, payout_store):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    _approved_earnings(referrals, owner, [40_000_000])

    referral_store.reserve_earnings = lambda *a, **kw: 0

    with pytest.raises(AlreadyProcessed):
        referrals.request_payout(owner)
    assert payout_store.has_open_payout(owner) is False


def test_completion_marks_earnings_paid(lifecycle, referrals, referral_store):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    earnings = _approved_earnings(referrals, owner, [40_000_000])
    payout = referrals.request_payout(owner)

    lifecycle.mark_manual_complete(payout.id, "BANK-TRF-1")

    paid = referral_store.get_earning(earnings[0].id)
    assert paid.payment_status == "paid"
    assert paid.paid_at is not None


def test_cancel_releases_earnings(lifecycle, referrals, referral_store):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    earnings = _approved_earnings(referrals, owner, [40_000_000])
    payout = referrals.request_payout(owner)

    lifecycle.cancel(payout.id, reason="wrong account")

    released = referral_store.get_earning(earnings[0].id)
    assert released.payment_status == "unpaid"
    assert released.payout_id is None
    assert referrals.check_eligibility(owner).eligible is True


def test_settlement_failure_keeps_committed_transition(lifecycle, referrals, referral_store, monkeypatch, caplog):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    earnings = _approved_earnings(referrals, owner, [40_000_000])
    payout = referrals.request_payout(owner)

    def _db_down(*args, **kwargs):
        raise RuntimeError("db connection lost")

    monkeypatch.setattr(referral_store, "mark_paid", _db_down)

    out = lifecycle.mark_manual_complete(payout.id, "BANK-TRF-2")

    assert out.status == "completed"
    assert lifecycle.get(payout.id).status == "completed"
    assert referral_store.get_earning(earnings[0].id).payment_status == "requested"
    assert "earnings settlement failed" in caplog.text

    monkeypatch.undo()
    assert referrals.settle_outstanding() == 1
    assert referral_store.get_earning(earnings[0].id).payment_status == "paid"
    assert referrals.settle_outstanding() == 0


def test_settle_outstanding_skips_open_payouts(referrals, referral_store):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    earnings = _approved_earnings(referrals, owner, [40_000_000])
    referrals.request_payout(owner)

    assert referrals.settle_outstanding() == 0
    assert referral_store.get_earning(earnings[0].id).payment_status == "requested"


def test_stats_summarise_earnings(referrals):
    owner = uuid.uuid4()
    _with_bank(referrals, owner)
    _approved_earnings(referrals, owner, [40_000_000])
    referrals.request_payout(owner)
    _approved_earnings(referrals, owner, [10_000_000])
    rejected = referrals.record_earning(
        referrer_id=owner, referred_user_id=uuid.uuid4(), order_id="o-rej", order_total_kobo=1_000_000
    )
    referrals.reject_earning(rejected.id)
    referrals.record_earning(referrer_id=owner, referred_user_id=uuid.uuid4(), order_id="o-new", order_total_kobo=100)

    s = referrals.stats(owner)

    assert s.total_earned_kobo == 750_000
    assert s.requested_kobo == 600_000
    assert s.available_kobo == 150_000
    assert s.paid_kobo == 0
    assert (s.pending_count, s.approved_count, s.rejected_count, s.paid_count) == (1, 2, 1, 0)


def test_search_earnings_filters_and_pages(referrals):
    a, b = uuid.uuid4(), uuid.uuid4()
    _approved_earnings(referrals, a, [100_000, 200_000])
    for i in range(3):
        referrals.record_earning(
            referrer_id=b, referred_user_id=uuid.uuid4(), order_id=f"b-{i}", order_total_kobo=100_000
        )

    pending = referrals.search_earnings(EarningQuery(status="pending", limit=2))
    assert pending.total == 3
    assert pending.total_pages == 2
    assert len(pending.earnings) == 2
    assert {e.referrer_id for e in pending.earnings} == {b}

    mine = referrals.search_earnings(EarningQuery(referrer_id=a))
    assert mine.total == 2
    assert {e.status for e in mine.earnings} == {"approved"}

    assert referrals.search_earnings(EarningQuery(payment_status="paid")).total == 0
