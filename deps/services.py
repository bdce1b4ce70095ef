# deps/services.py
from fastapi import Request

from app.payouts.lifecycle import PayoutLifecycle
from app.payouts.repository import PayoutStore
from app.referrals.service import ReferralService
from settings import Settings


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_payout_store(request: Request) -> PayoutStore:
    return request.app.state.payout_store


def get_lifecycle(request: Request) -> PayoutLifecycle:
    return request.app.state.lifecycle


def get_referrals(request: Request) -> ReferralService:
    return request.app.state.referrals
