"""PhonePe Standard Checkout (v2) adapter."""
from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime, timezone
from typing import Optional

from robomania.errors import CallbackAuthError, GatewayError
from robomania.services.gateways.base import (
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
    CallbackPayload,
    OrderResult,
    OrderStatus,
    PaymentGateway,
    as_dict,
    clamp_expiry,
    logger,
)

PHONEPE_URLS = {
    "sandbox": {
        "pg": "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "oauth": "https://api-preprod.phonepe.com/apis/pg-sandbox/v1/oauth/token",
    },
    "production": {
        "pg": "https://api.phonepe.com/apis/pg",
        "oauth": "https://api.phonepe.com/apis/identity-manager/v1/oauth/token",
    },
}

TOKEN_REFRESH_MARGIN = 60  # seconds

_STATES = {STATE_PENDING, STATE_COMPLETED, STATE_FAILED}


def _from_millis(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return None


class PhonePeGateway(PaymentGateway):
    """Checkout orders keyed by our merchant order id. The OAuth token is reused until it nears expiry."""

    name = "PHONEPE"
    callback_auth_header = "Authorization"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        client_version: int = 1,
        env: str = "sandbox",
        callback_username: str = "",
        callback_password: str = "",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version
        self.env = "production" if env == "production" else "sandbox"
        self.callback_username = callback_username
        self.callback_password = callback_password
        self._urls = PHONEPE_URLS[self.env]
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def callback_credentials(self) -> tuple[str, str]:
        return self.callback_username, self.callback_password

    async def _auth_header(self) -> dict[str, str]:
        now = time.time()
        if not self._token or now >= self._token_expires_at - TOKEN_REFRESH_MARGIN:
            data = await self._send(
                "POST",
                self._urls["oauth"],
                data={
                    "client_id": self.client_id,
                    "client_version": str(self.client_version),
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
            )
            token = data.get("access_token")
            if not token:
                raise GatewayError(self.name, "OAuth response missing access_token")
            self._token = token
            self._token_expires_at = float(data.get("expires_at") or now + 3600)
        return {"Authorization": f"O-Bearer {self._token}"}

    async def create_order(
        self,
        amount: int,
        merchant_order_id: str,
        redirect_url: str,
        expire_after: int = 1800,
        description: str = "",
    ) -> OrderResult:
        self._require_configured()
        headers = await self._auth_header()
        order = await self._send(
            "POST",
            f"{self._urls['pg']}/checkout/v2/sdk/order",
            headers=headers,
            json={
                "merchantOrderId": merchant_order_id,
                "amount": amount * 100,
                "expireAfter": clamp_expiry(expire_after),
                "paymentFlow": {
                    "type": "PG_CHECKOUT",
                    "message": description,
                    "merchantUrls": {"redirectUrl": redirect_url},
                },
            },
        )
        if not order.get("token"):
            raise GatewayError(self.name, "order response missing token")
        logger.info("PhonePe order %s created for %s", order.get("orderId"), merchant_order_id)
        return OrderResult(
            gateway=self.name,
            merchant_order_id=merchant_order_id,
            gateway_order_id=order.get("orderId") or merchant_order_id,
            expire_at=_from_millis(order.get("expireAt")),
            checkout_token=order["token"],
            redirect_url=redirect_url,
        )

    async def get_order_status(self, merchant_order_id: str, detailed: bool = True) -> OrderStatus:
        self._require_configured()
        headers = await self._auth_header()
        data = await self._send(
            "GET",
            f"{self._urls['pg']}/checkout/v2/order/{merchant_order_id}/status",
            headers=headers,
            params={"details": "true" if detailed else "false"},
        )
        state = (data.get("state") or STATE_PENDING).upper()
        if state not in _STATES:
            logger.warning("PhonePe order %s in unexpected state %s", merchant_order_id, state)
            state = STATE_PENDING
        details = data.get("paymentDetails") or []
        attempt = next((d for d in details if d.get("state") == STATE_COMPLETED), details[0] if details else {})
        return OrderStatus(
            state=state,
            amount=int(data.get("amount") or 0) // 100,
            transaction_id=attempt.get("transactionId"),
            error_code=data.get("errorCode") or attempt.get("errorCode"),
            payment_mode=attempt.get("paymentMode"),
            gateway_order_id=data.get("orderId"),
            raw=data,
        )

    def validate_callback(
        self, username: str, password: str, auth_header: str, raw_body: str
    ) -> CallbackPayload:
        """PhonePe sends SHA256("username:password") in the Authorization header."""
        if not (username and password):
            body = self._parse_unverified(raw_body)
        else:
            expected = hashlib.sha256(f"{username}:{password}".encode("utf-8")).hexdigest()
            received = (auth_header or "").strip()
            if received.upper().startswith("SHA256 "):
                received = received[7:].strip()
            if not received or not hmac.compare_digest(expected, received.lower()):
                raise CallbackAuthError("PhonePe callback authorization mismatch")
            body = self._load_json(raw_body)

        payload = as_dict(body.get("payload")) or as_dict(body.get("data"))
        return CallbackPayload(
            event=body.get("event") or body.get("type"),
            merchant_order_id=payload.get("merchantOrderId") or body.get("merchantOrderId"),
            gateway_order_id=payload.get("orderId"),
            raw=body,
        )
