"""Payment API routes: order creation, checkout verification, gateway callbacks, redirects and polling.

Every path that learns about a payment (signed checkout response, webhook,
browser redirect, manual poll) ends in ``reconcile``, which asks the gateway
for the authoritative order state before writing anything.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from robomania.errors import (
    CallbackAuthError,
    GatewayError,
    NotFound,
    RoboManiaError,
    SignatureMismatch,
    ValidationError,
)
from robomania.models.base import async_session_factory
from robomania.schemas import CompetitionEntry, TeamData
from robomania.services import pricing
from robomania.services.gateways import (
    PHONEPE,
    RAZORPAY,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
    PaymentGateway,
    normalize_gateway,
)
from robomania.services.notifications import NotificationDispatcher
from robomania.services.reconciliation import (
    find_registrations,
    order_team,
    recipient_of,
    reconcile,
    resolve_merchant_order_id,
)
from robomania.services.registrations import attach_gateway_order, new_merchant_order_id, write_registrations
from robomania.services.teams import resolve_team
from web.api.utils import base_url, get_gateways, get_notifier
from web.auth import get_current_email

logger = logging.getLogger("robomania.payments")

router = APIRouter(prefix="/api", tags=["payments"])


class OrderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gateway: str = PHONEPE
    team_id: Optional[str] = Field(None, alias="teamId")
    team_data: Optional[TeamData] = Field(None, alias="teamData")
    competitions: list[CompetitionEntry] = Field(default_factory=list)


class PaymentVerify(BaseModel):
    order_ref: str = Field(validation_alias=AliasChoices("orderRef", "razorpay_order_id", "merchantOrderId"))
    payment_id: Optional[str] = Field(None, validation_alias=AliasChoices("paymentId", "razorpay_payment_id"))
    signature: Optional[str] = Field(None, validation_alias=AliasChoices("signature", "razorpay_signature"))
    gateway: str = RAZORPAY  # only consulted for orders without registration rows


class StatusQuery(BaseModel):
    order_ref: str = Field(validation_alias=AliasChoices("orderRef", "merchantOrderId", "orderId"))
    gateway: Optional[str] = None


def _gateway(gateways: dict[str, PaymentGateway], name: Optional[str]) -> PaymentGateway:
    gateway = gateways.get(normalize_gateway(name))
    if gateway is None:
        raise ValidationError(f"Unsupported payment gateway: {name}")
    return gateway


@router.post("/orders")
async def create_order(
    body: OrderCreate,
    request: Request,
    email: Optional[str] = Depends(get_current_email),
    gateways: dict[str, PaymentGateway] = Depends(get_gateways),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Write PENDING registrations for the selected competitions, then open a checkout order.

    The rows are committed before the gateway is called: if the gateway fails
    they stay PENDING and a retry with the same RoboWars bot reuses them.
    """
    gateway = _gateway(gateways, body.gateway)
    settings = request.app.state.gateway_settings

    async with async_session_factory() as session:
        team = await resolve_team(session, email, team_id=body.team_id, team_data=body.team_data)
        merchant_order_id = new_merchant_order_id(team.id)
        written = await write_registrations(session, team, body.competitions, merchant_order_id, gateway.name)
        await session.commit()

        redirect_url = f"{base_url(request)}/api/payment/redirect/{gateway.name.lower()}?orderRef={merchant_order_id}"
        description = "RoboMania 2025: " + ", ".join(pricing.display_name(c) for c in written.competitions)
        try:
            order = await gateway.create_order(
                written.total_amount,
                merchant_order_id,
                redirect_url,
                expire_after=settings.order_expiry_seconds,
                description=description,
            )
        except GatewayError:
            logger.warning("Order %s left pending: %s order creation failed", merchant_order_id, gateway.name)
            raise

        if order.gateway_order_id and order.gateway_order_id != merchant_order_id:
            await attach_gateway_order(session, merchant_order_id, order.gateway_order_id)
            await session.commit()

    logger.info(
        "Order %s opened on %s for team %s: %d",
        merchant_order_id, gateway.name, team.id, written.total_amount,
    )
    await notifier.submit(
        "registration_started",
        recipient_of(team),
        {
            "team_name": team.team_name,
            "leader_name": team.leader_name,
            "competitions": written.competitions,
            "total_amount": written.total_amount,
            "app_url": base_url(request),
        },
        dedupe_key=f"registration_started:{merchant_order_id}",
    )
    return {
        "success": True,
        "gateway": gateway.name,
        "teamId": team.id,
        "merchantOrderId": merchant_order_id,
        "gatewayOrderRef": order.gateway_order_id,
        "totalAmount": written.total_amount,
        "token": order.checkout_token,
        "keyId": order.key_id,
        "checkoutTimeout": order.checkout_timeout,
        "expireAt": order.expire_at.isoformat() if order.expire_at else None,
        "redirectUrl": order.redirect_url,
        "registrations": [r.id for r in written.registrations],
    }


@router.post("/payment/verify")
async def verify_payment(
    body: PaymentVerify,
    gateways: dict[str, PaymentGateway] = Depends(get_gateways),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Checkout success handler: check the signed response, then reconcile against the gateway.

    A bad signature fails the payment outright, whatever the gateway would
    report. Gateways that do not sign checkout responses go straight to
    reconciliation.
    """
    async with async_session_factory() as session:
        regs = await find_registrations(session, body.order_ref)
        if regs:
            merchant_order_id = regs[0].payment_id
            provider_order_id = regs[0].gateway_order_id or body.order_ref
            gateway = _gateway(gateways, regs[0].payment_gateway)
        else:
            merchant_order_id = await resolve_merchant_order_id(session, body.order_ref)
            provider_order_id = body.order_ref
            gateway = _gateway(gateways, body.gateway)
        if not merchant_order_id:
            raise NotFound("Order not found")

        if gateway.signing_secret and not gateway.verify_signature(
            provider_order_id, body.payment_id or "", body.signature or ""
        ):
            logger.warning("Signature mismatch for order %s (payment %s)", merchant_order_id, body.payment_id)
            team = await order_team(session, merchant_order_id)
            await notifier.submit(
                "payment_failed",
                recipient_of(team),
                {
                    "team_name": team.team_name if team else "",
                    "merchant_order_id": merchant_order_id,
                    "reason": "Payment verification failed",
                },
                dedupe_key=f"payment_failed:{merchant_order_id}",
            )
            raise SignatureMismatch("Payment verification failed")

        result = await reconcile(session, gateways, merchant_order_id, gateway.name, notifier=notifier)
    return {"success": result.state == STATE_COMPLETED, **result.as_dict()}


@router.post("/payment/callback/{gateway_name}")
async def payment_callback(
    gateway_name: str,
    request: Request,
    gateways: dict[str, PaymentGateway] = Depends(get_gateways),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Gateway webhook. 401 if it cannot be authenticated; otherwise always 200 so the gateway stops retrying."""
    gateway = gateways.get(normalize_gateway(gateway_name))
    if gateway is None:
        raise NotFound(f"Unknown payment gateway: {gateway_name}")

    raw_body = (await request.body()).decode("utf-8", errors="replace")
    username, password = gateway.callback_credentials()
    auth_header = request.headers.get(gateway.callback_auth_header, "")

    state = None
    try:
        payload = gateway.validate_callback(username, password, auth_header, raw_body)
        logger.info(
            "%s callback %s for order %s",
            gateway.name, payload.event, payload.merchant_order_id or payload.gateway_order_id,
        )
        async with async_session_factory() as session:
            merchant_order_id = None
            for ref in (payload.merchant_order_id, payload.gateway_order_id):
                if ref and not merchant_order_id:
                    merchant_order_id = await resolve_merchant_order_id(session, ref)
            if merchant_order_id:
                result = await reconcile(session, gateways, merchant_order_id, gateway.name, notifier=notifier)
                state = result.state
            else:
                logger.warning("%s callback for unknown order %s", gateway.name, payload.merchant_order_id)
    except CallbackAuthError:
        raise
    except Exception:
        logger.exception("Failed to process %s callback", gateway.name)
    return {"success": True, "state": state}


@router.get("/payment/redirect/{gateway_name}")
async def payment_redirect(
    gateway_name: str,
    request: Request,
    order_ref: str = Query(..., alias="orderRef"),
    gateways: dict[str, PaymentGateway] = Depends(get_gateways),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Where the buyer lands after checkout. Reconciles, then sends them to the dashboard or back to registration."""
    base = base_url(request)
    try:
        async with async_session_factory() as session:
            merchant_order_id = await resolve_merchant_order_id(session, order_ref)
            if not merchant_order_id:
                raise NotFound("Order not found")
            result = await reconcile(
                session, gateways, merchant_order_id, normalize_gateway(gateway_name), notifier=notifier
            )
    except RoboManiaError as e:
        logger.warning("Redirect for %s could not be reconciled: %s", order_ref, e.message)
        return RedirectResponse(f"{base}/team-register?payment=failed&orderRef={order_ref}", status_code=302)

    if result.state == STATE_COMPLETED:
        target = f"{base}/dashboard?payment=success&orderRef={result.merchant_order_id}"
    elif result.state == STATE_FAILED:
        target = f"{base}/team-register?payment=failed&orderRef={result.merchant_order_id}"
    else:
        target = f"{base}/dashboard?payment=pending&orderRef={result.merchant_order_id}"
    return RedirectResponse(target, status_code=302)


async def _status(
    order_ref: str,
    gateway_name: Optional[str],
    gateways: dict[str, PaymentGateway],
    notifier: NotificationDispatcher,
) -> JSONResponse:
    async with async_session_factory() as session:
        merchant_order_id = await resolve_merchant_order_id(session, order_ref)
        if not merchant_order_id:
            raise NotFound("Order not found")
        result = await reconcile(session, gateways, merchant_order_id, gateway_name, notifier=notifier)
    code = 202 if result.state == STATE_PENDING else 200
    return JSONResponse(status_code=code, content={"success": result.state == STATE_COMPLETED, **result.as_dict()})


@router.get("/payment/status")
async def payment_status(
    order_ref: str = Query(..., alias="orderRef"),
    gateway: Optional[str] = None,
    gateways: dict[str, PaymentGateway] = Depends(get_gateways),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Manual poll. 202 while the payment is still pending."""
    return await _status(order_ref, gateway, gateways, notifier)


@router.post("/payment/status")
async def payment_status_post(
    body: StatusQuery,
    gateways: dict[str, PaymentGateway] = Depends(get_gateways),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return await _status(body.order_ref, body.gateway, gateways, notifier)
