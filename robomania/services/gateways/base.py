"""Provider-agnostic payment gateway interface."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from robomania.errors import CallbackAuthError, GatewayError

logger = logging.getLogger("robomania.payments")

STATE_PENDING = "PENDING"
STATE_COMPLETED = "COMPLETED"
STATE_FAILED = "FAILED"

MIN_ORDER_EXPIRY = 300
MAX_ORDER_EXPIRY = 3600  # providers refuse checkout sessions longer than one hour


def clamp_expiry(seconds: int) -> int:
    return max(MIN_ORDER_EXPIRY, min(int(seconds), MAX_ORDER_EXPIRY))


def as_dict(value: Any) -> dict:
    """``value`` if it is a JSON object, else an empty dict. Callback bodies are not trusted to be well formed."""
    return value if isinstance(value, dict) else {}


@dataclass
class OrderResult:
    gateway: str
    merchant_order_id: str
    gateway_order_id: str
    expire_at: Optional[datetime] = None
    checkout_token: Optional[str] = None  # PhonePe SDK token
    key_id: Optional[str] = None  # Razorpay public key for the checkout widget
    checkout_timeout: Optional[int] = None  # seconds the client-side checkout may stay open
    redirect_url: Optional[str] = None


@dataclass
class OrderStatus:
    state: str  # PENDING, COMPLETED, FAILED
    amount: int = 0  # rupees
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    payment_mode: Optional[str] = None
    gateway_order_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CallbackPayload:
    event: Optional[str]
    merchant_order_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """One payment provider. Callers only ever see this interface."""

    name: str = ""
    # Header carrying the provider's callback authentication
    callback_auth_header: str = "Authorization"

    def __init__(
        self,
        allow_unverified_callbacks: bool = False,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.allow_unverified_callbacks = allow_unverified_callbacks
        self.timeout = timeout
        self._transport = transport

    # --- interface ---

    @abstractmethod
    async def create_order(
        self,
        amount: int,
        merchant_order_id: str,
        redirect_url: str,
        expire_after: int = 1800,
        description: str = "",
    ) -> OrderResult:
        """Open a checkout order. ``amount`` is in rupees and sent to the provider in paise."""

    @abstractmethod
    async def get_order_status(self, merchant_order_id: str, detailed: bool = True) -> OrderStatus:
        """Authoritative order state from the provider."""

    @abstractmethod
    def validate_callback(
        self, username: str, password: str, auth_header: str, raw_body: str
    ) -> CallbackPayload:
        """Authenticate and parse a provider webhook. Raises CallbackAuthError."""

    @abstractmethod
    def callback_credentials(self) -> tuple[str, str]:
        """(username, password) configured for this provider's callbacks."""

    @property
    def signing_secret(self) -> Optional[str]:
        """Secret for checkout response signatures. None if the provider does not sign them."""
        return None

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when API credentials are present."""

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 of ``order_id|payment_id`` with the signing secret, as hex."""
        secret = self.signing_secret
        if not secret or not signature:
            return False
        expected = hmac.new(
            secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    # --- helpers ---

    def _parse_unverified(self, raw_body: str) -> dict:
        """Body of a callback when no credentials are configured. Fails closed unless explicitly allowed."""
        if not self.allow_unverified_callbacks:
            raise CallbackAuthError(f"{self.name} callback credentials are not configured")
        logger.warning("%s callback credentials not configured, accepting unverified callback", self.name)
        return self._load_json(raw_body)

    def _load_json(self, raw_body: str) -> dict:
        try:
            data = json.loads(raw_body or "")
        except ValueError:
            raise CallbackAuthError(f"{self.name} callback body is not valid JSON")
        if not isinstance(data, dict):
            raise CallbackAuthError(f"{self.name} callback body must be a JSON object")
        return data

    def _require_configured(self) -> None:
        if not self.configured:
            raise GatewayError(self.name, "credentials not configured")

    async def _send(self, method: str, url: str, **kwargs) -> dict:
        """Send a request to the provider. Any failure becomes GatewayError with the provider's message."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s request %s %s failed: %s", self.name, method, url, e)
            raise GatewayError(self.name, str(e) or e.__class__.__name__) from e
        if r.status_code >= 400:
            msg = _error_message(r)
            logger.warning("%s returned %d for %s %s: %s", self.name, r.status_code, method, url, msg)
            raise GatewayError(self.name, msg, r.status_code)
        try:
            return r.json()
        except ValueError:
            raise GatewayError(self.name, "invalid JSON response", r.status_code)


def _error_message(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return err.get("description") or err.get("code") or r.text
        if isinstance(err, str):
            return err
        if body.get("message"):
            return body["message"]
        if body.get("code"):
            return str(body["code"])
    return r.text
