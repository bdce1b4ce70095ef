from __future__ import annotations

import threading
from typing import Optional

from app.payouts.errors import GatewayUnavailable
from app.payouts.model import BankDetails
from app.providers.base import GatewayRejected, TransferInit, TransferStatus, TransferState


class MockGateway:
    """
    Sandbox/test gateway. Keeps transfers in memory.

    - requires_otp=True makes create_transfer answer with an OTP challenge;
      only `valid_otp` is accepted by finalize_transfer.
    - available=False makes every call raise GatewayUnavailable.
    - set_status(reference, ...) simulates the gateway resolving a transfer.
    """

    def __init__(
        self,
        *,
        requires_otp: bool = False,
        valid_otp: str = "123456",
        available: bool = True,
        return_reference: bool = True,
        account_names: Optional[dict[tuple[str, str], str]] = None,
    ):
        self.requires_otp = requires_otp
        self.valid_otp = valid_otp
        self.available = available
        self.return_reference = return_reference
        self.account_names = dict(account_names or {})
        self.calls: list[tuple[str, str]] = []
        self._statuses: dict[str, TransferState] = {}
        self._codes: dict[str, str] = {}
        self._lock = threading.Lock()

    def _record(self, op: str, key: str) -> None:
        with self._lock:
            self.calls.append((op, key))
        if not self.available:
            raise GatewayUnavailable(f"mock gateway unavailable ({op})")

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def set_status(self, reference: str, status: TransferState) -> None:
        self._statuses[reference] = status

    def create_transfer(
        self,
        *,
        bank_details: BankDetails,
        amount_kobo: int,
        reference: str,
        reason: str,
    ) -> TransferInit:
        self._record("create_transfer", reference)
        if amount_kobo <= 0:
            raise GatewayRejected("Invalid amount", http_status=400)

        code = f"TRF_{reference}"
        self._codes[code] = reference
        status: TransferState = "otp" if self.requires_otp else "pending"
        self._statuses[reference] = status

        return TransferInit(
            reference=reference if self.return_reference else None,
            transfer_code=code,
            requires_otp=self.requires_otp,
            status=status,
            response={"mock": True, "status": status},
        )

    def finalize_transfer(self, *, transfer_code: str, otp: str) -> TransferStatus:
        self._record("finalize_transfer", transfer_code)
        reference = self._codes.get(transfer_code)
        if reference is None:
            raise GatewayRejected("Transfer not found", http_status=404)
        if otp != self.valid_otp:
            raise GatewayRejected("Invalid OTP", http_status=400)

        self._statuses[reference] = "pending"
        return TransferStatus(status="pending", reference=reference, response={"mock": True})

    def resend_otp(self, *, transfer_code: str) -> None:
        self._record("resend_otp", transfer_code)
        if transfer_code not in self._codes:
            raise GatewayRejected("Transfer not found", http_status=404)

    def get_transfer_status(self, reference: str) -> TransferStatus:
        self._record("get_transfer_status", reference)
        status = self._statuses.get(reference)
        if status is None:
            return TransferStatus(status="not_found", reference=reference, error="Transfer not found")
        return TransferStatus(
            status=status,
            reference=reference,
            response={"mock": True, "status": status},
            error="Mock transfer failed" if status == "failed" else None,
        )

    def resolve_account(self, *, account_number: str, bank_code: str) -> str:
        self._record("resolve_account", account_number)
        name = self.account_names.get((account_number, bank_code))
        if name is None:
            if len(account_number) != 10 or not account_number.isdigit():
                raise GatewayRejected("Could not resolve account name", http_status=422)
            name = "MOCK ACCOUNT HOLDER"
        return name
