from __future__ import annotations

import json

import pytest
import requests

from app.payouts.errors import GatewayUnavailable
from app.payouts.model import BankDetails
from app.providers.base import GatewayRejected
from app.providers.paystack import PaystackGateway


BANK = BankDetails(account_name="ADA OBI", account_number="0123456789", bank_code="058")


class _FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)
        self.reason = "OK"

    def json(self):
        return self._payload


def _gateway() -> PaystackGateway:
    return PaystackGateway(secret_key="sk_test_abc", base_url="https://paystack.test", timeout_s=3)


def test_create_transfer_with_otp(monkeypatch):
    calls = {"recipient": 0, "transfer": 0}

    def fake_post(url, headers=None, json=None, timeout=None):
        assert headers["Authorization"] == "Bearer sk_test_abc"
        assert timeout == 3.0
        if url.endswith("/transferrecipient"):
            calls["recipient"] += 1
            assert json["account_number"] == "0123456789"
            assert json["type"] == "nuban"
            return _FakeResponse(201, {"status": True, "data": {"recipient_code": "RCP_1"}})
        if url.endswith("/transfer"):
            calls["transfer"] += 1
            assert json["amount"] == 50_000_000
            assert json["recipient"] == "RCP_1"
            assert json["reference"] == "payout_abc_1"
            assert json["currency"] == "NGN"
            return _FakeResponse(
                200,
                {"status": True, "data": {"status": "otp", "transfer_code": "TRF_1", "reference": "payout_abc_1"}},
            )
        raise AssertionError(f"unexpected url {url}")

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    gw = _gateway()
    init = gw.create_transfer(bank_details=BANK, amount_kobo=50_000_000, reference="payout_abc_1", reason="r")
    assert init.requires_otp is True
    assert init.status == "otp"
    assert init.transfer_code == "TRF_1"
    assert init.reference == "payout_abc_1"

    # recipient code is reused
    gw.create_transfer(bank_details=BANK, amount_kobo=50_000_000, reference="payout_abc_1", reason="r")
    assert calls == {"recipient": 1, "transfer": 2}


def test_create_transfer_without_otp(monkeypatch):
    def fake_post(url, headers=None, json=None, timeout=None):
        if url.endswith("/transferrecipient"):
            return _FakeResponse(201, {"status": True, "data": {"recipient_code": "RCP_1"}})
        return _FakeResponse(200, {"status": True, "data": {"status": "pending", "transfer_code": "TRF_2"}})

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    init = _gateway().create_transfer(bank_details=BANK, amount_kobo=600_000, reference="payout_abc_2", reason="r")
    assert init.requires_otp is False
    assert init.status == "pending"
    # falls back to the reference we sent
    assert init.reference == "payout_abc_2"


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_retryable_http_is_gateway_unavailable(monkeypatch, status_code):
    def fake_post(url, headers=None, json=None, timeout=None):
        return _FakeResponse(status_code, {"status": False, "message": "busy"})

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    with pytest.raises(GatewayUnavailable):
        _gateway().create_transfer(bank_details=BANK, amount_kobo=600_000, reference="r1", reason="r")


def test_business_rejection_is_gateway_rejected(monkeypatch):
    def fake_post(url, headers=None, json=None, timeout=None):
        return _FakeResponse(400, {"status": False, "message": "Invalid OTP"})

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    with pytest.raises(GatewayRejected) as ei:
        _gateway().finalize_transfer(transfer_code="TRF_1", otp="000000")
    assert ei.value.message == "Invalid OTP"
    assert ei.value.http_status == 400


def test_timeout_is_gateway_unavailable(monkeypatch):
    def fake_post(url, headers=None, json=None, timeout=None):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    with pytest.raises(GatewayUnavailable):
        _gateway().resend_otp(transfer_code="TRF_1")


def test_missing_secret_key_fails_without_http(monkeypatch):
    def fake_post(*a, **kw):
        raise AssertionError("should not be called")

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    gw = PaystackGateway(secret_key="")
    with pytest.raises(GatewayUnavailable):
        gw.resend_otp(transfer_code="TRF_1")


def test_resend_otp_sends_reason(monkeypatch):
    seen = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        seen["url"] = url
        seen["body"] = json
        return _FakeResponse(200, {"status": True, "data": {}})

    monkeypatch.setattr("app.providers.paystack.requests.post", fake_post)

    _gateway().resend_otp(transfer_code="TRF_9")
    assert seen["url"].endswith("/transfer/resend_otp")
    assert seen["body"] == {"transfer_code": "TRF_9", "reason": "transfer"}


@pytest.mark.parametrize(
    "raw,expected",
    [("success", "success"), ("failed", "failed"), ("reversed", "failed"), ("pending", "pending"), ("otp", "otp")],
)
def test_verify_maps_status(monkeypatch, raw, expected):
    def fake_get(url, headers=None, params=None, timeout=None):
        assert url.endswith("/transfer/verify/payout_abc_1")
        return _FakeResponse(200, {"status": True, "data": {"status": raw, "reference": "payout_abc_1"}})

    monkeypatch.setattr("app.providers.paystack.requests.get", fake_get)

    st = _gateway().get_transfer_status("payout_abc_1")
    assert st.status == expected
    assert st.reference == "payout_abc_1"


def test_verify_404_is_not_found(monkeypatch):
    def fake_get(url, headers=None, params=None, timeout=None):
        return _FakeResponse(404, {"status": False, "message": "Transfer not found"})

    monkeypatch.setattr("app.providers.paystack.requests.get", fake_get)

    st = _gateway().get_transfer_status("payout_missing_1")
    assert st.status == "not_found"
    assert st.is_terminal


def test_resolve_account(monkeypatch):
    def fake_get(url, headers=None, params=None, timeout=None):
        assert url.endswith("/bank/resolve")
        assert params == {"account_number": "0123456789", "bank_code": "058"}
        return _FakeResponse(200, {"status": True, "data": {"account_name": "ADA OBI"}})

    monkeypatch.setattr("app.providers.paystack.requests.get", fake_get)

    assert _gateway().resolve_account(account_number="0123456789", bank_code="058") == "ADA OBI"


def test_resolve_account_rejected(monkeypatch):
    def fake_get(url, headers=None, params=None, timeout=None):
        return _FakeResponse(422, {"status": False, "message": "Could not resolve account name"})

    monkeypatch.setattr("app.providers.paystack.requests.get", fake_get)

    with pytest.raises(GatewayRejected):
        _gateway().resolve_account(account_number="0123456789", bank_code="058")
