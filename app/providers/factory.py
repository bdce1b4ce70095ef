
# app/providers/factory.py
from __future__ import annotations

from settings import Settings


def build_gateway(cfg: Settings):
    name = (cfg.PAYOUT_GATEWAY or "").strip().lower()

    if name == "paystack":
        from app.providers.paystack import PaystackGateway
        return PaystackGateway(
            secret_key=cfg.PAYSTACK_SECRET_KEY,
            base_url=cfg.PAYSTACK_BASE_URL,
            timeout_s=cfg.PAYSTACK_HTTP_TIMEOUT_S,
            currency=cfg.PAYSTACK_CURRENCY,
        )

    if name == "mock":
        from app.providers.mock import MockGateway
        return MockGateway()

    raise RuntimeError(f"Unsupported PAYOUT_GATEWAY={cfg.PAYOUT_GATEWAY!r}")
