"""Payment gateway adapters and the registry built from configuration."""
from __future__ import annotations

from typing import Optional

import httpx

from config import GatewaySettings
from robomania.services.gateways.base import (
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
    CallbackPayload,
    OrderResult,
    OrderStatus,
    PaymentGateway,
)
from robomania.services.gateways.phonepe import PhonePeGateway
from robomania.services.gateways.razorpay import RazorpayGateway

RAZORPAY = RazorpayGateway.name
PHONEPE = PhonePeGateway.name

__all__ = [
    "CallbackPayload",
    "OrderResult",
    "OrderStatus",
    "PaymentGateway",
    "PhonePeGateway",
    "RazorpayGateway",
    "PHONEPE",
    "RAZORPAY",
    "STATE_COMPLETED",
    "STATE_FAILED",
    "STATE_PENDING",
    "build_gateways",
    "normalize_gateway",
]


def normalize_gateway(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def build_gateways(
    settings: GatewaySettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict[str, PaymentGateway]:
    """One adapter per provider, keyed by provider name."""
    common = {
        "allow_unverified_callbacks": settings.allow_unverified_callbacks,
        "transport": transport,
    }
    return {
        RAZORPAY: RazorpayGateway(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
            **common,
        ),
        PHONEPE: PhonePeGateway(
            client_id=settings.phonepe_client_id,
            client_secret=settings.phonepe_client_secret,
            client_version=settings.phonepe_client_version,
            env=settings.phonepe_env,
            callback_username=settings.phonepe_callback_username,
            callback_password=settings.phonepe_callback_password,
            **common,
        ),
    }
