from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# NUBAN account numbers are 10 digits
_ACCOUNT_RE = re.compile(r"\b\d{10}\b")
_SECRET_KEY_RE = re.compile(r"\bsk_(live|test)_[A-Za-z0-9]+\b")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "signature",
    "password",
    "otp",
)

_ACCOUNT_KEYS = ("account_number", "accountnumber")


def _mask_email(match: re.Match) -> str:
    first = match.group(1)
    domain = match.group(3)
    return f"{first}***{domain}"


def mask_account_number(value: str | None) -> str:
    v = (value or "").strip()
    if len(v) <= 4:
        return "****"
    return f"{'*' * (len(v) - 4)}{v[-4:]}"


def redact_text(value: str) -> str:
    masked = _EMAIL_RE.sub(_mask_email, value)
    masked = _ACCOUNT_RE.sub(lambda m: mask_account_number(m.group(0)), masked)
    masked = _SECRET_KEY_RE.sub("[REDACTED]", masked)

    if "bearer " in masked.lower():
        return "[REDACTED]"

    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        key_l = (k or "").lower()
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif key_l in _ACCOUNT_KEYS and isinstance(v, str):
            out[k] = mask_account_number(v)
        else:
            out[k] = redact_value(v)
    return out
