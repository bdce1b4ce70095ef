from __future__ import annotations

import os

from fastapi import APIRouter, Depends

from db import ping
from deps.services import get_settings
from settings import Settings

router = APIRouter(tags=["health"])


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/healthz")
def healthz(cfg: Settings = Depends(get_settings)):
    if cfg.STORE_BACKEND == "postgres":
        db_ok, db_error = ping()
    else:
        db_ok, db_error = None, None
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "store": cfg.STORE_BACKEND,
        "db_ok": db_ok,
        "db_error": db_error,
    }


@router.get("/health")
def health(cfg: Settings = Depends(get_settings)):
    return {
        "ok": True,
        "env": cfg.ENV,
        "gateway": cfg.PAYOUT_GATEWAY,
        "git_sha": _resolve_git_sha(),
    }
