
# tests/conftest.py

import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from app.payouts.lifecycle import PayoutLifecycle
from app.payouts.memory import InMemoryPayoutStore
from app.payouts.model import PAYMENT_PENDING, PENDING, BankDetails, PayoutRequest
from app.providers.mock import MockGateway
from app.referrals.memory import InMemoryReferralStore
from app.referrals.service import ReferralService
from main import create_app
from security import ROLE_ADMIN, ROLE_USER, create_access_token
from settings import Settings


BANK = BankDetails(account_name="ADA OBI", account_number="0123456789", bank_code="058")


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[uuid.UUID, Optional[str], str]] = []

    def payout_status_changed(self, payout, previous_status):
        self.sent.append((payout.id, previous_status, payout.status))
        if self.fail:
            raise RuntimeError("smtp down")


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------
# Domain fixtures
# ---------------------------

@pytest.fixture()
def payout_store() -> InMemoryPayoutStore:
    return InMemoryPayoutStore()


@pytest.fixture()
def referral_store() -> InMemoryReferralStore:
    return InMemoryReferralStore()


@pytest.fixture()
def gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def referrals(referral_store, payout_store, gateway) -> ReferralService:
    return ReferralService(
        referral_store,
        payout_store,
        gateway,
        default_min_payout_kobo=500_000,
        default_percentage=1.5,
    )


@pytest.fixture()
def lifecycle(payout_store, gateway, notifier, referrals) -> PayoutLifecycle:
    return PayoutLifecycle(payout_store, gateway, notifier=notifier, earnings=referrals)


@pytest.fixture()
def make_payout(payout_store) -> Callable[..., PayoutRequest]:
    def _make(
        *,
        amount_kobo: int = 750_000,
        owner_id: Optional[uuid.UUID] = None,
        bank_details: BankDetails = BANK,
        requested_at: Optional[datetime] = None,
    ) -> PayoutRequest:
        now = requested_at or datetime.now(timezone.utc)
        payout = PayoutRequest(
            id=uuid.uuid4(),
            owner_id=owner_id or uuid.uuid4(),
            amount_kobo=amount_kobo,
            bank_details=bank_details,
            status=PENDING,
            payment_status=PAYMENT_PENDING,
            requested_at=now,
            updated_at=now,
        )
        return payout_store.create(payout)

    return _make


# ---------------------------
# Client + Auth Helpers
# ---------------------------

@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        ENV="test",
        STORE_BACKEND="memory",
        PAYOUT_GATEWAY="mock",
        PAYSTACK_SECRET_KEY="sk_test_webhooksecret",
    )


@pytest.fixture()
def app(test_settings, payout_store, referral_store, gateway, notifier):
    return create_app(
        test_settings,
        payout_store=payout_store,
        referral_store=referral_store,
        gateway=gateway,
        notifier=notifier,
    )


@pytest.fixture()
def client(app) -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture()
def admin_headers() -> Dict[str, str]:
    return _auth_headers(create_access_token(str(uuid.uuid4()), role=ROLE_ADMIN))


@pytest.fixture()
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def user_headers(user_id) -> Dict[str, str]:
    return _auth_headers(create_access_token(str(user_id), role=ROLE_USER))
