#main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse

from app.notifications import LogNotifier, Notifier
from app.payouts.errors import PayoutError
from app.payouts.lifecycle import PayoutLifecycle
from app.payouts.memory import InMemoryPayoutStore
from app.payouts.repository import PayoutStore, PostgresPayoutStore
from app.providers.base import PaymentGateway
from app.providers.factory import build_gateway
from app.referrals.memory import InMemoryReferralStore
from app.referrals.repository import PostgresReferralStore, ReferralStore
from app.referrals.service import ReferralService
from db import close_pool
from middleware import RequestContextMiddleware
from routes.admin_payouts import router as admin_payouts_router
from routes.admin_referrals import router as admin_referrals_router
from routes.health import router as health_router
from routes.referrals import router as referrals_router
from routes.webhooks import router as webhooks_router
from services.payout_errors import payout_error_handler
from settings import Settings, settings, validate_env_settings

logger = logging.getLogger("payouts.http")


def _build_stores(cfg: Settings) -> tuple[PayoutStore, ReferralStore]:
    if cfg.STORE_BACKEND == "memory":
        return InMemoryPayoutStore(), InMemoryReferralStore()

    return PostgresPayoutStore(), PostgresReferralStore()


def create_app(
    cfg: Optional[Settings] = None,
    *,
    payout_store: Optional[PayoutStore] = None,
    referral_store: Optional[ReferralStore] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    cfg = cfg or settings
    logging.getLogger("payouts").setLevel((cfg.LOG_LEVEL or "INFO").upper())

    if cfg is settings:
        validate_env_settings()

    default_payouts, default_referrals = (None, None)
    if payout_store is None or referral_store is None:
        default_payouts, default_referrals = _build_stores(cfg)
    payout_store = payout_store or default_payouts
    referral_store = referral_store or default_referrals
    gateway = gateway or build_gateway(cfg)

    referrals = ReferralService(
        referral_store,
        payout_store,
        gateway,
        default_min_payout_kobo=cfg.MIN_PAYOUT_KOBO,
        default_percentage=cfg.REFERRAL_PERCENTAGE,
    )
    lifecycle = PayoutLifecycle(
        payout_store,
        gateway,
        notifier=notifier or LogNotifier(),
        earnings=referrals,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("startup env=%s store=%s gateway=%s", cfg.ENV, cfg.STORE_BACKEND, cfg.PAYOUT_GATEWAY)
        yield
        if cfg.STORE_BACKEND == "postgres":
            close_pool()

    app = FastAPI(title="Referral Payouts API", version="1.0.0", lifespan=lifespan)

    app.state.settings = cfg
    app.state.payout_store = payout_store
    app.state.referral_store = referral_store
    app.state.gateway = gateway
    app.state.referrals = referrals
    app.state.lifecycle = lifecycle

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    app.include_router(health_router)
    app.include_router(admin_payouts_router)
    app.include_router(admin_referrals_router)
    app.include_router(referrals_router)
    app.include_router(webhooks_router)

    app.add_exception_handler(PayoutError, payout_error_handler)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
