"""Default configuration for the DealSpot backend.

Every value can be overridden through the environment; a settings file named
by ``APP_SETTINGS`` is applied on top, and tests pass their own mapping to
``create_app``.
"""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///dealspot.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

    # Payouts fall back to simulated transfers when no key is configured.
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    PAYOUT_CURRENCY = os.environ.get("PAYOUT_CURRENCY", "eur")

    VOUCHER_VALIDITY_DAYS = _env_int("VOUCHER_VALIDITY_DAYS", 30)
    AUTH_TOKEN_MAX_AGE = _env_int("AUTH_TOKEN_MAX_AGE", 86400)

    FREE_DEAL_LIMIT = _env_int("FREE_DEAL_LIMIT", 2)
    PRICE_PER_DEAL_CREDIT = _env_float("PRICE_PER_DEAL_CREDIT", 5.00)
    MOCK_PAYMENT_SUCCESS_RATE = _env_float("MOCK_PAYMENT_SUCCESS_RATE", 0.9)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
