# routes/webhooks.py
from __future__ import annotations

import hmac
import hashlib
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, HTTPException
from starlette.concurrency import run_in_threadpool

from app.payouts.lifecycle import PayoutLifecycle
from deps.services import get_lifecycle, get_settings
from services.redaction import redact_text
from settings import Settings


router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("payouts.webhooks")


# Paystack transfer events -> outcome handed to the lifecycle
_TRANSFER_EVENTS = {
    "transfer.success": "success",
    "transfer.failed": "failed",
    "transfer.reversed": "reversed",
}


def _verify_signature(*, raw: bytes, signature_header: str | None, secret: str | None) -> tuple[bool, str | None]:
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    expected = hmac.new(secret.strip().encode("utf-8"), raw, hashlib.sha512).hexdigest()
    if not hmac.compare_digest(expected, signature_header.strip().lower()):
        return False, "INVALID_SIGNATURE"

    return True, None


def _unwrap_payload(payload: Any) -> dict:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return {}


@router.post("/paystack")
async def paystack_webhook(
    req: Request,
    lifecycle: PayoutLifecycle = Depends(get_lifecycle),
    cfg: Settings = Depends(get_settings),
):
    raw = await req.body()
    sig_header = req.headers.get("x-paystack-signature")

    sig_ok, sig_err = _verify_signature(raw=raw, signature_header=sig_header, secret=cfg.PAYSTACK_SECRET_KEY)
    if not sig_ok:
        logger.warning("paystack webhook rejected reason=%s", sig_err)
        raise HTTPException(status_code=401, detail=sig_err)

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=400, detail="INVALID_JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="INVALID_JSON")

    event = str(payload.get("event") or "").strip().lower()
    outcome = _TRANSFER_EVENTS.get(event)
    if outcome is None:
        logger.info("paystack webhook ignored event=%s", event or None)
        return {"ok": True, "ignored": True}

    data = _unwrap_payload(payload)
    reference = str(data.get("reference") or "").strip()
    if not reference:
        raise HTTPException(status_code=400, detail="MISSING_REFERENCE")

    reason = data.get("reason") or data.get("gateway_response")
    logger.info("paystack webhook event=%s reference=%s reason=%s", event, reference, redact_text(str(reason or "")) or None)

    # the lifecycle claims the row; run it off the event loop
    payout = await run_in_threadpool(
        lifecycle.apply_gateway_event,
        reference,
        outcome,
        reason=str(reason) if reason else None,
    )
    if payout is None:
        return {"ok": True, "payout_id": None, "status": None}
    return {"ok": True, "payout_id": str(payout.id), "status": payout.status}
