# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


DEFAULT_JWT_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "test", "staging", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # Store
    # -----------------------
    DATABASE_URL: str = ""
    STORE_BACKEND: Literal["postgres", "memory"] = "postgres"
    DB_POOL_MIN: int = Field(default=1, ge=1)
    DB_POOL_MAX: int = Field(default=10, ge=1)
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, ge=100)

    # -----------------------
    # JWT
    # -----------------------
    JWT_SECRET: str = Field(default=DEFAULT_JWT_SECRET, min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Payment gateway
    # -----------------------
    PAYOUT_GATEWAY: Literal["paystack", "mock"] = "paystack"

    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CURRENCY: str = "NGN"

    # bounded round trip; a timeout leaves the payout in its pre-call state
    PAYSTACK_HTTP_TIMEOUT_S: float = 20.0

    # -----------------------
    # Referral program defaults (kobo)
    # -----------------------
    MIN_PAYOUT_KOBO: int = Field(default=500_000, ge=10_000)
    REFERRAL_PERCENTAGE: float = Field(default=1.5, ge=0, le=100)


settings = Settings()


def validate_env_settings() -> None:
    env = (settings.ENV or "dev").strip().lower()
    if env not in ("staging", "prod"):
        return

    missing: list[str] = []

    if settings.STORE_BACKEND == "postgres" and not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")

    secret = (settings.JWT_SECRET or "").strip()
    if not secret or secret == DEFAULT_JWT_SECRET or len(secret) < 32:
        missing.append("JWT_SECRET")

    if settings.PAYOUT_GATEWAY == "paystack" and not (settings.PAYSTACK_SECRET_KEY or "").strip():
        missing.append("PAYSTACK_SECRET_KEY")

    if env == "prod" and settings.PAYOUT_GATEWAY == "mock":
        missing.append("PAYOUT_GATEWAY")

    if missing:
        raise RuntimeError(
            f"Environment validation failed for ENV={env}. "
            "Missing or insecure settings: " + ", ".join(sorted(set(missing)))
        )
