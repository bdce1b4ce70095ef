
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.observability import reset_request_id, resolve_request_id, set_request_id

logger = logging.getLogger("payouts.http")

SENSITIVE_HEADERS = {"authorization", "cookie", "x-paystack-signature"}

def _safe_headers(headers: dict) -> dict:
    safe = {}
    for k, v in headers.items():
        lk = k.lower()
        if lk in SENSITIVE_HEADERS:
            safe[k] = "***"
        else:
            safe[k] = v
    return safe

class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = resolve_request_id(request.headers.get("X-Request-Id"))
        start = time.time()

        # attach to request state and to the logging/audit context
        request.state.request_id = req_id
        token = set_request_id(req_id)

        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-Id"] = req_id
            return response
        finally:
            duration_ms = int((time.time() - start) * 1000)
            status = getattr(response, "status_code", 500)

            # one line per request (no PII)
            logger.info(
                "http_request request_id=%s method=%s path=%s status=%s duration_ms=%s client=%s",
                req_id,
                request.method,
                request.url.path,
                status,
                duration_ms,
                request.client.host if request.client else None,
            )
            logger.debug("http_request request_id=%s headers=%s", req_id, _safe_headers(dict(request.headers)))
            reset_request_id(token)
