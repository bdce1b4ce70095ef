from __future__ import annotations

import uuid
from contextvars import ContextVar, Token


_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(value: str | None) -> Token:
    return _request_id.set(value)


def reset_request_id(token: Token) -> None:
    _request_id.reset(token)


def get_request_id() -> str | None:
    return _request_id.get()


def resolve_request_id(header_value: str | None) -> str:
    value = (header_value or "").strip()
    # caller-supplied ids are echoed back; keep them short and printable
    if value and len(value) <= 128 and value.isprintable():
        return value
    return str(uuid.uuid4())
