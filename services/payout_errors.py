# services/payout_errors.py
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.payouts.errors import PayoutError

logger = logging.getLogger("payouts.http")

PAYOUT_ERROR_HTTP_MAP: dict[str, int] = {
    "PAYOUT_NOT_FOUND": 404,
    "EARNING_NOT_FOUND": 404,
    "INVALID_STATE": 409,
    "ALREADY_PROCESSED": 409,
    "INVALID_CODE": 422,
    "VALIDATION_ERROR": 422,
    "GATEWAY_UNAVAILABLE": 503,
}


def http_status_for(exc: PayoutError) -> int:
    return PAYOUT_ERROR_HTTP_MAP.get(exc.code, 500)


def error_body(exc: PayoutError) -> dict:
    return {
        "detail": {
            "code": exc.code,
            "message": exc.message,
            "retryable": exc.retryable,
        }
    }


async def payout_error_handler(request: Request, exc: PayoutError) -> JSONResponse:
    status = http_status_for(exc)
    if status == 500:
        logger.error("unmapped payout error code=%s path=%s", exc.code, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    logger.info("payout error code=%s status=%s path=%s", exc.code, status, request.url.path)
    return JSONResponse(status_code=status, content=error_body(exc))
