# examcoach/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

PROVIDER_PAYSTACK = "paystack"
PROVIDER_STRIPE = "stripe"

OTP_MODE_CONSOLE = "console"
OTP_MODE_DISABLED = "disabled"


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_bool(name: str, default: bool) -> bool:
    v = _env(name).lower()
    if not v:
        return default
    return v not in ("0", "false", "no", "off")


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = _env(name)
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """
    Process configuration. Built once by the app factory and handed to
    components explicitly; nothing in the core reads os.environ itself.
    """

    database_url: str = "sqlite:///./examcoach.db"
    secret_key: str = "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG"
    access_token_expire_minutes: int = 1440

    billing_enabled: bool = True
    payment_provider: str = PROVIDER_PAYSTACK
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    app_base_url: str = "http://127.0.0.1:8000"
    payment_http_timeout: float = 15.0

    # Weekly subscription: NGN 600 in kobo. Never taken from the client.
    subscription_price_minor: int = 60000
    subscription_currency: str = "NGN"

    credential_rounds: int = 120_000
    otp_mode: str = OTP_MODE_CONSOLE

    log_level: str = "INFO"
    env_mode: str = "LOCAL"

    @property
    def payment_callback_url(self) -> str:
        return f"{self.app_base_url}/billing/callback"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        load_dotenv(dotenv_path or find_dotenv(usecwd=True), override=False)
        d = cls()
        return cls(
            database_url=_env("DATABASE_URL", d.database_url),
            secret_key=_env("SECRET_KEY", d.secret_key),
            access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", d.access_token_expire_minutes),
            billing_enabled=_env_bool("BILLING_ENABLED", d.billing_enabled),
            payment_provider=_env("PAYMENT_PROVIDER", d.payment_provider).lower(),
            paystack_secret_key=_env("PAYSTACK_SECRET_KEY"),
            paystack_base_url=_env("PAYSTACK_BASE_URL", d.paystack_base_url).rstrip("/"),
            stripe_secret_key=_env("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
            app_base_url=_env("APP_BASE_URL", d.app_base_url).rstrip("/"),
            payment_http_timeout=_env_float("PAYMENT_HTTP_TIMEOUT", d.payment_http_timeout),
            subscription_price_minor=_env_int("SUBSCRIPTION_PRICE_MINOR", d.subscription_price_minor),
            subscription_currency=_env("SUBSCRIPTION_CURRENCY", d.subscription_currency).upper(),
            credential_rounds=_env_int("CREDENTIAL_ROUNDS", d.credential_rounds),
            otp_mode=_env("OTP_MODE", d.otp_mode).lower(),
            log_level=_env("LOG_LEVEL", d.log_level).upper(),
            env_mode=_env("ENV_MODE", d.env_mode).upper(),
        )
