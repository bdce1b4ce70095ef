from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from app.payouts.errors import GatewayUnavailable
from app.payouts.model import BankDetails
from app.providers.base import (
    GatewayRejected,
    TransferInit,
    TransferStatus,
    map_transfer_status,
)
from services.redaction import mask_account_number, redact_dict


logger = logging.getLogger("payouts.paystack")

DEFAULT_BASE_URL = "https://api.paystack.co"


class PaystackGateway:
    """
    Paystack Transfers adapter.

    Flow: transferrecipient -> transfer (-> finalize_transfer when OTP is on)
    -> transfer/verify/{reference}. Amounts go out in kobo.

    Raises GatewayUnavailable for timeouts, connection errors and
    408/425/429/5xx answers; GatewayRejected for other 4xx answers.
    """

    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 20.0,
        currency: str = "NGN",
    ) -> None:
        self.secret_key = (secret_key or "").strip()
        self.base_url = (base_url or DEFAULT_BASE_URL).strip().rstrip("/")
        self.timeout_s = float(timeout_s)
        self.currency = (currency or "NGN").strip().upper()
        # recipient codes are stable per (account_number, bank_code)
        self._recipients: dict[tuple[str, str], str] = {}

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, *, body: dict | None = None, params: dict | None = None):
        if not self.secret_key:
            raise GatewayUnavailable("PAYSTACK_SECRET_KEY_NOT_SET")

        url = f"{self.base_url}{path}"
        try:
            if method == "GET":
                resp = requests.get(url, headers=self._headers(), params=params, timeout=self.timeout_s)
            else:
                resp = requests.post(url, headers=self._headers(), json=body, timeout=self.timeout_s)
        except requests.Timeout as exc:
            logger.warning("paystack %s %s timed out after %ss", method, path, self.timeout_s)
            raise GatewayUnavailable(f"Paystack timeout: {exc}") from exc
        except requests.RequestException as exc:
            logger.warning("paystack %s %s transport error err=%s", method, path, exc)
            raise GatewayUnavailable(f"Paystack unreachable: {exc}") from exc

        logger.info("paystack %s %s status=%s", method, path, resp.status_code)
        return resp

    def _ok_data(self, resp, *, stage: str) -> dict[str, Any]:
        payload = _safe_json(resp)
        if resp.status_code in (200, 201) and isinstance(payload, dict) and payload.get("status") is not False:
            data = payload.get("data")
            return data if isinstance(data, dict) else {}

        message = _message(payload) or f"HTTP {resp.status_code}"
        if _is_retryable_http(resp.status_code):
            raise GatewayUnavailable(f"Paystack {stage} failed: {message}")
        logger.warning(
            "paystack %s rejected status=%s body=%s",
            stage,
            resp.status_code,
            redact_dict(payload) if isinstance(payload, dict) else None,
        )
        raise GatewayRejected(message, http_status=resp.status_code, response=payload)

    def _recipient_code(self, bank_details: BankDetails) -> str:
        key = (bank_details.account_number, bank_details.bank_code)
        cached = self._recipients.get(key)
        if cached:
            return cached

        resp = self._request(
            "POST",
            "/transferrecipient",
            body={
                "type": "nuban",
                "name": bank_details.account_name,
                "account_number": bank_details.account_number,
                "bank_code": bank_details.bank_code,
                "currency": self.currency,
            },
        )
        data = self._ok_data(resp, stage="recipient")
        code = (data.get("recipient_code") or "").strip()
        if not code:
            raise GatewayRejected("Paystack recipient response missing recipient_code", http_status=resp.status_code)

        logger.info(
            "paystack recipient created account=%s recipient=%s",
            mask_account_number(bank_details.account_number),
            code,
        )
        self._recipients[key] = code
        return code

    def create_transfer(
        self,
        *,
        bank_details: BankDetails,
        amount_kobo: int,
        reference: str,
        reason: str,
    ) -> TransferInit:
        recipient = self._recipient_code(bank_details)
        resp = self._request(
            "POST",
            "/transfer",
            body={
                "source": "balance",
                "reason": reason,
                "amount": int(amount_kobo),
                "recipient": recipient,
                "reference": reference,
                "currency": self.currency,
            },
        )
        data = self._ok_data(resp, stage="transfer")
        status = map_transfer_status(data.get("status"))
        requires_otp = status == "otp" or bool(data.get("requires_otp"))

        return TransferInit(
            reference=(data.get("reference") or reference),
            transfer_code=data.get("transfer_code"),
            requires_otp=requires_otp,
            status="otp" if requires_otp else status,
            response=_response_payload(resp, stage="transfer"),
        )

    def finalize_transfer(self, *, transfer_code: str, otp: str) -> TransferStatus:
        resp = self._request(
            "POST",
            "/transfer/finalize_transfer",
            body={"transfer_code": transfer_code, "otp": otp},
        )
        data = self._ok_data(resp, stage="finalize")
        return TransferStatus(
            status=map_transfer_status(data.get("status")),
            reference=data.get("reference"),
            response=_response_payload(resp, stage="finalize"),
        )

    def resend_otp(self, *, transfer_code: str) -> None:
        resp = self._request(
            "POST",
            "/transfer/resend_otp",
            body={"transfer_code": transfer_code, "reason": "transfer"},
        )
        self._ok_data(resp, stage="resend_otp")

    def get_transfer_status(self, reference: str) -> TransferStatus:
        resp = self._request("GET", f"/transfer/verify/{reference}")
        if resp.status_code == 404:
            return TransferStatus(
                status="not_found",
                reference=reference,
                response=_response_payload(resp, stage="verify"),
                error=_message(_safe_json(resp)) or "Transfer not found",
            )

        data = self._ok_data(resp, stage="verify")
        return TransferStatus(
            status=map_transfer_status(data.get("status")),
            reference=data.get("reference") or reference,
            response=_response_payload(resp, stage="verify"),
            error=data.get("reason") if map_transfer_status(data.get("status")) == "failed" else None,
        )

    def resolve_account(self, *, account_number: str, bank_code: str) -> str:
        resp = self._request(
            "GET",
            "/bank/resolve",
            params={"account_number": account_number, "bank_code": bank_code},
        )
        data = self._ok_data(resp, stage="resolve")
        name = (data.get("account_name") or "").strip()
        if not name:
            raise GatewayRejected("Account could not be resolved", http_status=resp.status_code)
        return name


def _safe_json(resp) -> Any:
    try:
        return resp.json()
    except Exception:
        return None


def _message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        msg = payload.get("message")
        if msg:
            return str(msg)
    return None


def _response_payload(resp, *, stage: str) -> dict[str, Any]:
    return {
        "stage": stage,
        "http_status": resp.status_code,
        "body": _safe_json(resp),
    }


def _is_retryable_http(status_code: int) -> bool:
    if 500 <= status_code <= 599:
        return True
    return status_code in (408, 425, 429)
