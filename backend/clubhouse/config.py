# clubhouse/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv, find_dotenv

# -------------------------------------------------
# LOAD .env ONCE (before any getenv use)
# -------------------------------------------------
load_dotenv(find_dotenv(usecwd=True))

APP_VERSION = "1.0.0"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _flag(name: str, default: bool = False) -> bool:
    v = (_env(name) or "").lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


def _int(name: str, default: int) -> int:
    try:
        return int(_env(name) or default)
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    try:
        return float(_env(name) or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    environment: str
    database_url: str
    secret_key: str
    access_token_expire_minutes: int
    refresh_token_expire_days: int
    app_base_url: str
    cookie_secure: bool
    org_name: str

    # Stripe
    billing_enabled: bool
    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_price_id: str
    membership_price_cents: int
    membership_currency: str

    # Payment success polling
    payment_poll_interval_seconds: float
    payment_poll_max_retries: int

    # Rate limiting: "memory" (single instance) or "database" (shared)
    rate_limit_backend: str

    # Outgoing mail; every send is skipped unless email_enabled
    email_enabled: bool
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_from_name: str
    smtp_from_email: str

    debug_endpoints_enabled: bool
    log_level: str

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_username and self.smtp_password and self.smtp_from_email)


@lru_cache
def get_settings() -> Settings:
    base = (_env("APP_BASE_URL") or "http://127.0.0.1:8000").rstrip("/")
    return Settings(
        environment=_env("ENVIRONMENT", "development"),
        database_url=_env("DATABASE_URL", "sqlite:///./clubhouse.db"),
        secret_key=_env("SECRET_KEY", "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG"),
        access_token_expire_minutes=_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60),
        refresh_token_expire_days=_int("REFRESH_TOKEN_EXPIRE_DAYS", 30),
        app_base_url=base,
        cookie_secure=_flag("COOKIE_SECURE", default=base.startswith("https://")),
        org_name=_env("ORG_NAME", "Clubhouse"),
        billing_enabled=_flag("BILLING_ENABLED", default=True),
        stripe_secret_key=_env("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET", ""),
        stripe_price_id=_env("STRIPE_PRICE_ID", ""),
        membership_price_cents=_int("MEMBERSHIP_PRICE_CENTS", 9700),
        membership_currency=_env("MEMBERSHIP_CURRENCY", "usd"),
        payment_poll_interval_seconds=_float("PAYMENT_POLL_INTERVAL_SECONDS", 2.0),
        payment_poll_max_retries=_int("PAYMENT_POLL_MAX_RETRIES", 15),
        rate_limit_backend=(_env("RATE_LIMIT_BACKEND", "memory") or "memory").lower(),
        email_enabled=_flag("EMAIL_ENABLED"),
        smtp_host=_env("SMTP_HOST", ""),
        smtp_port=_int("SMTP_PORT", 587),
        smtp_username=_env("SMTP_USERNAME", ""),
        smtp_password=_env("SMTP_PASSWORD", ""),
        smtp_from_name=_env("SMTP_FROM_NAME") or _env("ORG_NAME", "Clubhouse"),
        smtp_from_email=_env("SMTP_FROM_EMAIL") or _env("SMTP_USERNAME", ""),
        debug_endpoints_enabled=_flag("DEBUG_ENDPOINTS_ENABLED"),
        log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
    )


def seed_admin_config() -> Optional[tuple[str, str]]:
    """(email, password) when SEED_ADMIN is on, else None."""
    if not _flag("SEED_ADMIN"):
        return None
    email = _env("SEED_ADMIN_EMAIL", "admin@example.com")
    password = _env("SEED_ADMIN_PASSWORD", "AdminPassword123!")
    return email, password
