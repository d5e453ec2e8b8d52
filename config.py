"""Configuration for the RoboMania registration service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'robomania.db'}",
)

# Public URL of the site (used for gateway redirect URLs and email links).
# Empty = derive from the incoming request headers.
APP_URL = os.getenv("APP_URL", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Web auth (JWT secret shared with the sign-in provider, initial admin bootstrap)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = 7
INITIAL_ADMIN_USERNAME = os.getenv("INITIAL_ADMIN_USERNAME", "admin")
INITIAL_ADMIN_PASSWORD = os.getenv("INITIAL_ADMIN_PASSWORD", "")  # Set to bootstrap first admin

# Razorpay
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")

# PhonePe Standard Checkout
PHONEPE_CLIENT_ID = os.getenv("PHONEPE_CLIENT_ID", "")
PHONEPE_CLIENT_SECRET = os.getenv("PHONEPE_CLIENT_SECRET", "")
PHONEPE_CLIENT_VERSION = _parse_int(os.getenv("PHONEPE_CLIENT_VERSION", "1"), 1)
PHONEPE_ENV = os.getenv("PHONEPE_ENV", "sandbox").lower()  # sandbox | production
PHONEPE_CALLBACK_USERNAME = os.getenv("PHONEPE_CALLBACK_USERNAME", "")
PHONEPE_CALLBACK_PASSWORD = os.getenv("PHONEPE_CALLBACK_PASSWORD", "")

# Accept gateway callbacks without configured credentials (local development only)
ALLOW_UNVERIFIED_CALLBACKS = _parse_bool(os.getenv("ALLOW_UNVERIFIED_CALLBACKS", "false"))

ORDER_EXPIRY_SECONDS = _parse_int(os.getenv("ORDER_EXPIRY_SECONDS", "1800"), 1800)

# Email (Resend). Without an API key, emails are only logged.
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "RoboMania <onboarding@resend.dev>")
NOTIFY_MAX_ATTEMPTS = _parse_int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3"), 3)
NOTIFY_BACKOFF_SECONDS = float(os.getenv("NOTIFY_BACKOFF_SECONDS", "2"))


@dataclass(frozen=True)
class GatewaySettings:
    """Payment gateway credentials, built once at startup and handed to the adapters."""

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    phonepe_client_id: str = ""
    phonepe_client_secret: str = ""
    phonepe_client_version: int = 1
    phonepe_env: str = "sandbox"
    phonepe_callback_username: str = ""
    phonepe_callback_password: str = ""
    allow_unverified_callbacks: bool = False
    order_expiry_seconds: int = 1800


def load_gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        razorpay_key_id=RAZORPAY_KEY_ID,
        razorpay_key_secret=RAZORPAY_KEY_SECRET,
        razorpay_webhook_secret=RAZORPAY_WEBHOOK_SECRET,
        phonepe_client_id=PHONEPE_CLIENT_ID,
        phonepe_client_secret=PHONEPE_CLIENT_SECRET,
        phonepe_client_version=PHONEPE_CLIENT_VERSION,
        phonepe_env=PHONEPE_ENV,
        phonepe_callback_username=PHONEPE_CALLBACK_USERNAME,
        phonepe_callback_password=PHONEPE_CALLBACK_PASSWORD,
        allow_unverified_callbacks=ALLOW_UNVERIFIED_CALLBACKS,
        order_expiry_seconds=ORDER_EXPIRY_SECONDS,
    )
