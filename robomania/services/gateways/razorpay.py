"""Razorpay Orders API adapter."""
from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
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

RAZORPAY_API = "https://api.razorpay.com/v1"


class RazorpayGateway(PaymentGateway):
    """Orders are looked up by ``receipt``, which carries the merchant order reference.

    Razorpay orders have no server-side expiry. The expiry is recorded in the
    order notes and returned as ``checkout_timeout`` for the checkout widget's
    ``timeout`` option, so it is enforced by the client only.
    """

    name = "RAZORPAY"
    callback_auth_header = "X-Razorpay-Signature"

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str = "", **kwargs):
        super().__init__(**kwargs)
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def signing_secret(self) -> Optional[str]:
        return self.key_secret or None

    def callback_credentials(self) -> tuple[str, str]:
        return "", self.webhook_secret

    async def create_order(
        self,
        amount: int,
        merchant_order_id: str,
        redirect_url: str,
        expire_after: int = 1800,
        description: str = "",
    ) -> OrderResult:
        self._require_configured()
        timeout = clamp_expiry(expire_after)
        expire_at = datetime.now(timezone.utc) + timedelta(seconds=timeout)
        order = await self._send(
            "POST",
            f"{RAZORPAY_API}/orders",
            auth=(self.key_id, self.key_secret),
            json={
                "amount": amount * 100,
                "currency": "INR",
                "receipt": merchant_order_id,
                "notes": {
                    "merchant_order_id": merchant_order_id,
                    "description": description,
                    "expire_at": expire_at.isoformat(),
                },
            },
        )
        if not order.get("id"):
            raise GatewayError(self.name, "order response missing id")
        logger.info("Razorpay order %s created for %s", order["id"], merchant_order_id)
        return OrderResult(
            gateway=self.name,
            merchant_order_id=merchant_order_id,
            gateway_order_id=order["id"],
            expire_at=expire_at,
            key_id=self.key_id,
            checkout_timeout=timeout,
            redirect_url=redirect_url,
        )

    async def _find_order(self, merchant_order_id: str) -> dict:
        data = await self._send(
            "GET",
            f"{RAZORPAY_API}/orders",
            auth=(self.key_id, self.key_secret),
            params={"receipt": merchant_order_id},
        )
        items = data.get("items") or []
        if not items:
            raise GatewayError(self.name, f"no order with receipt {merchant_order_id}", 404)
        # Newest first; a receipt is only reused if order creation was retried
        return items[0]

    async def get_order_status(self, merchant_order_id: str, detailed: bool = True) -> OrderStatus:
        self._require_configured()
        order = await self._find_order(merchant_order_id)
        status = OrderStatus(
            state=STATE_COMPLETED if order.get("status") == "paid" else STATE_PENDING,
            amount=int(order.get("amount") or 0) // 100,
            gateway_order_id=order.get("id"),
            raw=order,
        )
        if status.state == STATE_COMPLETED and not detailed:
            return status

        data = await self._send(
            "GET",
            f"{RAZORPAY_API}/orders/{order['id']}/payments",
            auth=(self.key_id, self.key_secret),
        )
        payments = data.get("items") or []
        captured = [p for p in payments if p.get("status") == "captured"]
        if captured:
            status.state = STATE_COMPLETED
            status.transaction_id = captured[0].get("id")
            status.payment_mode = captured[0].get("method")
        elif payments and all(p.get("status") == "failed" for p in payments):
            status.state = STATE_FAILED
            status.error_code = payments[0].get("error_code")
        return status

    def validate_callback(
        self, username: str, password: str, auth_header: str, raw_body: str
    ) -> CallbackPayload:
        """``password`` is the webhook secret; ``auth_header`` the X-Razorpay-Signature value."""
        if not password:
            body = self._parse_unverified(raw_body)
        else:
            expected = hmac.new(
                password.encode("utf-8"), (raw_body or "").encode("utf-8"), hashlib.sha256
            ).hexdigest()
            if not auth_header or not hmac.compare_digest(expected, auth_header.strip()):
                raise CallbackAuthError("Razorpay webhook signature mismatch")
            body = self._load_json(raw_body)

        payload = as_dict(body.get("payload"))
        order = as_dict(as_dict(payload.get("order")).get("entity"))
        payment = as_dict(as_dict(payload.get("payment")).get("entity"))
        notes = as_dict(payment.get("notes"))
        return CallbackPayload(
            event=body.get("event"),
            merchant_order_id=order.get("receipt") or notes.get("merchant_order_id"),
            gateway_order_id=order.get("id") or payment.get("order_id"),
            raw=body,
        )
